"""
Liyaqa - Member, Plan and Subscription Tests
"""
from datetime import date

from liyaqa.models import MemberStatus, SubscriptionStatus
from liyaqa.services.membership_service import membership_service


def create_plan(client, headers, name='Monthly', price='300.00', duration_days=30):
    res = client.post('/api/plans', json={
        'name_en': name, 'name_ar': 'شهري', 'price': price, 'duration_days': duration_days
    }, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


class TestMembers:
    """Test member management"""

    def test_create_member(self, member, tenant_id):
        assert member['id'].startswith('member_')
        assert member['tenant_id'] == tenant_id
        assert member['full_name'] == 'Sara Alqahtani'
        assert member['email'] == 'sara@example.sa'
        assert member['status'] == MemberStatus.ACTIVE
        assert member['marketing_opt_in'] is True
        assert member['preferred_language'] == 'en'
        assert member['tags'] == []

    def test_email_normalized_and_unique_per_tenant(self, client, tenant_headers, member):
        res = client.post('/api/members', json={'first_name': 'Copy', 'email': ' SARA@example.sa '},
                          headers=tenant_headers)
        assert res.status_code == 409

    def test_validation(self, client, tenant_headers):
        assert client.post('/api/members', json={'last_name': 'Nameless'},
                           headers=tenant_headers).status_code == 400
        assert client.post('/api/members', json={'first_name': 'X', 'gender': 'robot'},
                           headers=tenant_headers).status_code == 400
        assert client.post('/api/members', json={'first_name': 'X', 'preferred_language': 'fr'},
                           headers=tenant_headers).status_code == 400
        assert client.post('/api/members', json={'first_name': 'X', 'tags': 'vip'},
                           headers=tenant_headers).status_code == 400

    def test_update_and_tags(self, client, tenant_headers, member):
        res = client.put(f"/api/members/{member['id']}", json={
            'tags': ['vip', 'morning', 'vip'], 'date_of_birth': '1995-04-12'
        }, headers=tenant_headers)

        assert res.status_code == 200
        assert res.get_json()['tags'] == ['morning', 'vip']
        assert res.get_json()['date_of_birth'] == '1995-04-12'

    def test_search(self, client, tenant_headers, member):
        client.post('/api/members', json={'first_name': 'Ahmed', 'email': 'ahmed@example.sa'},
                    headers=tenant_headers)

        res = client.get('/api/members?search=ahmed', headers=tenant_headers)
        assert [m['first_name'] for m in res.get_json()['members']] == ['Ahmed']

        res = client.get('/api/members', headers=tenant_headers)
        assert res.get_json()['total'] == 2

    def test_delete_deactivates(self, client, tenant_headers, member):
        res = client.delete(f"/api/members/{member['id']}", headers=tenant_headers)
        assert res.get_json() == {'message': 'Member deactivated'}

        res = client.get(f"/api/members/{member['id']}", headers=tenant_headers)
        assert res.get_json()['status'] == MemberStatus.INACTIVE

    def test_check_in(self, client, tenant_headers, member):
        res = client.post(f"/api/members/{member['id']}/check-in", json={'at': '2026-10-18T06:15:00Z'},
                          headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['last_check_in_at'] == '2026-10-18T06:15:00'

        client.delete(f"/api/members/{member['id']}", headers=tenant_headers)
        res = client.post(f"/api/members/{member['id']}/check-in", headers=tenant_headers)
        assert res.status_code == 400

    def test_unknown_member(self, client, tenant_headers):
        res = client.get('/api/members/member_missing', headers=tenant_headers)
        assert res.status_code == 404
        assert res.get_json()['message'] == 'Member member_missing not found'


class TestPlans:
    """Test membership plans"""

    def test_create_and_list(self, client, tenant_headers):
        create_plan(client, tenant_headers, name='Annual', price='2500', duration_days=365)
        plan = create_plan(client, tenant_headers)

        assert plan['price'] == '300.00'
        res = client.get('/api/plans', headers=tenant_headers)
        assert [p['name_en'] for p in res.get_json()['plans']] == ['Monthly', 'Annual']

    def test_duration_must_be_positive(self, client, tenant_headers):
        for duration in (0, -30, 'abc'):
            res = client.post('/api/plans', json={'name_en': 'Bad', 'duration_days': duration},
                              headers=tenant_headers)
            assert res.status_code == 400

    def test_deactivated_plan_hidden_and_unsellable(self, client, tenant_headers, member):
        plan = create_plan(client, tenant_headers)
        client.put(f"/api/plans/{plan['id']}", json={'is_active': False}, headers=tenant_headers)

        res = client.get('/api/plans?active_only=true', headers=tenant_headers)
        assert res.get_json()['plans'] == []

        res = client.post('/api/subscriptions', json={'member_id': member['id'], 'plan_id': plan['id']},
                          headers=tenant_headers)
        assert res.status_code == 400


class TestSubscriptions:
    """Test subscriptions"""

    def test_subscribe(self, client, tenant_headers, member):
        plan = create_plan(client, tenant_headers)

        res = client.post('/api/subscriptions', json={
            'member_id': member['id'], 'plan_id': plan['id'], 'start_date': '2026-11-01'
        }, headers=tenant_headers)

        assert res.status_code == 201
        subscription = res.get_json()
        assert subscription['status'] == SubscriptionStatus.ACTIVE
        assert subscription['start_date'] == '2026-11-01'
        assert subscription['end_date'] == '2026-12-01'

        res = client.get(f"/api/members/{member['id']}/subscriptions", headers=tenant_headers)
        assert res.get_json()['total'] == 1

    def test_subscribing_reactivates_member(self, client, tenant_headers, member):
        plan = create_plan(client, tenant_headers)
        client.delete(f"/api/members/{member['id']}", headers=tenant_headers)

        client.post('/api/subscriptions', json={'member_id': member['id'], 'plan_id': plan['id']},
                    headers=tenant_headers)

        res = client.get(f"/api/members/{member['id']}", headers=tenant_headers)
        assert res.get_json()['status'] == MemberStatus.ACTIVE

    def test_cancel(self, client, tenant_headers, member):
        plan = create_plan(client, tenant_headers)
        subscription = client.post('/api/subscriptions', json={
            'member_id': member['id'], 'plan_id': plan['id']
        }, headers=tenant_headers).get_json()

        res = client.post(f"/api/subscriptions/{subscription['id']}/cancel", headers=tenant_headers)
        assert res.get_json()['status'] == SubscriptionStatus.CANCELLED
        assert res.get_json()['cancelled_at'] is not None

        res = client.post(f"/api/subscriptions/{subscription['id']}/cancel", headers=tenant_headers)
        assert res.status_code == 400

    def test_requires_member_and_plan(self, client, tenant_headers, member):
        res = client.post('/api/subscriptions', json={'member_id': member['id']}, headers=tenant_headers)
        assert res.status_code == 400

        res = client.post('/api/subscriptions', json={'member_id': member['id'], 'plan_id': 'plan_missing'},
                          headers=tenant_headers)
        assert res.status_code == 404

    def test_expire_subscriptions(self, client, tenant_headers, member):
        plan = create_plan(client, tenant_headers)
        client.post('/api/subscriptions', json={
            'member_id': member['id'], 'plan_id': plan['id'], 'start_date': '2026-01-01'
        }, headers=tenant_headers)

        assert membership_service.expire_subscriptions(today=date(2026, 3, 1)) == 1

        res = client.get('/api/subscriptions?status=expired', headers=tenant_headers)
        assert res.get_json()['total'] == 1
