"""
Liyaqa - Organization, Club, Location and Gender Policy Tests
"""
from datetime import datetime

from liyaqa.database import db
from liyaqa.models import DBLocation, GenderPolicy
from liyaqa.services.gender_policy_service import gender_policy_service

from tests.conftest import VAT_NUMBER


def create_club(client, headers, organization_id, name='Fitness Time Olaya'):
    res = client.post('/api/clubs', json={'name_en': name, 'organization_id': organization_id}, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


def create_location(client, headers, club_id, **kwargs):
    body = {'name_en': 'Olaya Branch', 'city': 'Riyadh'}
    body.update(kwargs)
    res = client.post(f'/api/clubs/{club_id}/locations', json=body, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


class TestOrganizations:
    """Test organization CRUD"""

    def test_provisioned_organization_listed(self, client, tenant_headers, tenant):
        res = client.get('/api/organizations', headers=tenant_headers)

        assert res.status_code == 200
        data = res.get_json()
        assert data['total'] == 1
        assert data['organizations'][0]['id'] == tenant['organization']['id']

    def test_create_and_update(self, client, tenant_headers):
        res = client.post('/api/organizations', json={
            'name_en': 'Fitness Time Ladies', 'name_ar': 'وقت اللياقة للسيدات', 'vat_number': VAT_NUMBER
        }, headers=tenant_headers)
        assert res.status_code == 201
        organization_id = res.get_json()['id']

        res = client.put(f'/api/organizations/{organization_id}', json={'email': 'ladies@fitnesstime.sa'},
                         headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['email'] == 'ladies@fitnesstime.sa'

    def test_vat_number_validated(self, client, tenant_headers):
        for bad in ('123', '100000000000003', '30000000000000A', '300000000000001'):
            res = client.post('/api/organizations', json={'name_en': 'Bad VAT', 'vat_number': bad},
                              headers=tenant_headers)
            assert res.status_code == 400, bad

    def test_name_required(self, client, tenant_headers):
        res = client.post('/api/organizations', json={'name_ar': 'بدون اسم'}, headers=tenant_headers)
        assert res.status_code == 400

    def test_delete_blocked_by_clubs(self, client, tenant_headers, tenant):
        organization_id = tenant['organization']['id']
        club = create_club(client, tenant_headers, organization_id)

        res = client.delete(f'/api/organizations/{organization_id}', headers=tenant_headers)
        assert res.status_code == 409

        assert client.delete(f"/api/clubs/{club['id']}", headers=tenant_headers).status_code == 200
        assert client.delete(f'/api/organizations/{organization_id}', headers=tenant_headers).status_code == 200

    def test_other_tenant_cannot_see_organization(self, client, platform_headers, tenant):
        res = client.post('/api/platform/tenants', json={
            'name': 'Body Masters', 'admin_email': 'owner@bodymasters.sa', 'admin_password': 'Str0ng!Pass1'
        }, headers=platform_headers)
        other_id = res.get_json()['tenant']['id']

        headers = dict(platform_headers, **{'X-Tenant-ID': other_id})
        res = client.get(f"/api/organizations/{tenant['organization']['id']}", headers=headers)
        assert res.status_code == 404


class TestClubsAndLocations:
    """Test clubs and their locations"""

    def test_club_requires_existing_organization(self, client, tenant_headers):
        res = client.post('/api/clubs', json={'name_en': 'Orphan', 'organization_id': 'org_missing'},
                          headers=tenant_headers)
        assert res.status_code == 404

    def test_location_defaults(self, client, tenant_headers, tenant):
        club = create_club(client, tenant_headers, tenant['organization']['id'])
        location = create_location(client, tenant_headers, club['id'])

        assert location['timezone'] == 'Asia/Riyadh'
        assert location['gender_policy'] == GenderPolicy.MIXED

        res = client.get(f"/api/clubs/{club['id']}/locations", headers=tenant_headers)
        assert res.get_json()['total'] == 1

        res = client.get(f"/api/organizations/{tenant['organization']['id']}/clubs", headers=tenant_headers)
        assert res.get_json()['clubs'][0]['id'] == club['id']

    def test_location_validation(self, client, tenant_headers, tenant):
        club = create_club(client, tenant_headers, tenant['organization']['id'])

        res = client.post(f"/api/clubs/{club['id']}/locations", json={
            'name_en': 'Somewhere', 'timezone': 'Mars/Olympus'
        }, headers=tenant_headers)
        assert res.status_code == 400

        res = client.post(f"/api/clubs/{club['id']}/locations", json={
            'name_en': 'Somewhere', 'gender_policy': 'children_only'
        }, headers=tenant_headers)
        assert res.status_code == 400

    def test_club_delete_blocked_by_locations(self, client, tenant_headers, tenant):
        club = create_club(client, tenant_headers, tenant['organization']['id'])
        location = create_location(client, tenant_headers, club['id'])

        assert client.delete(f"/api/clubs/{club['id']}", headers=tenant_headers).status_code == 409
        assert client.delete(f"/api/locations/{location['id']}", headers=tenant_headers).status_code == 200
        assert client.delete(f"/api/clubs/{club['id']}", headers=tenant_headers).status_code == 200

    def test_update_location(self, client, tenant_headers, tenant):
        club = create_club(client, tenant_headers, tenant['organization']['id'])
        location = create_location(client, tenant_headers, club['id'])

        res = client.put(f"/api/locations/{location['id']}", json={'phone': '+966112223344'},
                         headers=tenant_headers)
        assert res.get_json()['phone'] == '+966112223344'


class TestGenderPolicies:
    """Test per-location gender access"""

    def _location(self, client, headers, tenant, policy):
        club = create_club(client, headers, tenant['organization']['id'])
        return create_location(client, headers, club['id'], gender_policy=policy)

    def test_list_policies(self, client, tenant_headers):
        res = client.get('/api/gender-policies', headers=tenant_headers)
        policies = {p['policy']: p for p in res.get_json()['policies']}

        assert set(policies) == set(GenderPolicy.ALL)
        assert policies[GenderPolicy.FEMALE_ONLY]['name_ar'] == 'نساء فقط'

    def test_single_gender_location(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.FEMALE_ONLY)

        res = client.get(f"/api/gender-policies/locations/{location['id']}/check?gender=female",
                         headers=tenant_headers)
        assert res.get_json()['allowed'] is True
        assert res.get_json()['message_en'] == 'Access allowed'

        res = client.get(f"/api/gender-policies/locations/{location['id']}/check?gender=male",
                         headers=tenant_headers)
        data = res.get_json()
        assert data['allowed'] is False
        assert data['message_en'] == 'This location is currently reserved for women'
        assert data['message_ar'] == 'هذا الموقع مخصص حالياً لـالنساء'

    def test_time_based_schedule(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.TIME_BASED)
        url = f"/api/gender-policies/locations/{location['id']}"

        res = client.post(f'{url}/schedules', json={
            'day_of_week': 'Monday', 'start_time': '06:00', 'end_time': '12:00', 'gender': 'female'
        }, headers=tenant_headers)
        assert res.status_code == 201
        assert res.get_json() == {
            'id': res.get_json()['id'], 'location_id': location['id'], 'day_of_week': 'monday',
            'start_time': '06:00', 'end_time': '12:00', 'gender': 'female'
        }

        # 2026-10-19 is a Monday
        res = client.get(f'{url}/check?gender=male&at=2026-10-19T09:30', headers=tenant_headers)
        data = res.get_json()
        assert data['allowed'] is False
        assert data['schedule']['gender'] == 'female'
        assert data['checked_at'] == '2026-10-19T09:30:00'

        res = client.get(f'{url}/check?gender=male&at=2026-10-19T12:00', headers=tenant_headers)
        assert res.get_json()['allowed'] is True
        assert res.get_json()['schedule'] is None

        res = client.get(url, headers=tenant_headers)
        assert len(res.get_json()['schedules']) == 1

    def test_overlapping_schedules_rejected(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.TIME_BASED)
        url = f"/api/gender-policies/locations/{location['id']}/schedules"

        client.post(url, json={'day_of_week': 'sunday', 'start_time': '06:00', 'end_time': '12:00',
                               'gender': 'female'}, headers=tenant_headers)

        res = client.post(url, json={'day_of_week': 'sunday', 'start_time': '11:00', 'end_time': '14:00',
                                     'gender': 'male'}, headers=tenant_headers)
        assert res.status_code == 400

        # touching windows are fine
        res = client.post(url, json={'day_of_week': 'sunday', 'start_time': '12:00', 'end_time': '14:00',
                                     'gender': 'male'}, headers=tenant_headers)
        assert res.status_code == 201

    def test_schedule_validation(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.TIME_BASED)
        url = f"/api/gender-policies/locations/{location['id']}/schedules"

        for body in (
            {'day_of_week': 'someday', 'start_time': '06:00', 'end_time': '12:00', 'gender': 'female'},
            {'day_of_week': 'monday', 'start_time': '12:00', 'end_time': '06:00', 'gender': 'female'},
            {'day_of_week': 'monday', 'start_time': '6am', 'end_time': '12:00', 'gender': 'female'},
            {'day_of_week': 'monday', 'start_time': '06:00', 'end_time': '12:00', 'gender': 'other'},
        ):
            assert client.post(url, json=body, headers=tenant_headers).status_code == 400

    def test_update_and_delete_schedule(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.TIME_BASED)
        url = f"/api/gender-policies/locations/{location['id']}/schedules"
        schedule = client.post(url, json={'day_of_week': 'friday', 'start_time': '16:00', 'end_time': '20:00',
                                          'gender': 'male'}, headers=tenant_headers).get_json()

        res = client.put(f"{url}/{schedule['id']}", json={'end_time': '22:00'}, headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['end_time'] == '22:00'
        assert res.get_json()['start_time'] == '16:00'

        assert client.delete(f"{url}/{schedule['id']}", headers=tenant_headers).status_code == 200
        assert client.delete(f"{url}/{schedule['id']}", headers=tenant_headers).status_code == 404

    def test_change_policy(self, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.MIXED)
        url = f"/api/gender-policies/locations/{location['id']}"

        res = client.put(url, json={'gender_policy': GenderPolicy.MALE_ONLY}, headers=tenant_headers)
        assert res.get_json()['gender_policy'] == GenderPolicy.MALE_ONLY

        res = client.put(url, json={'gender_policy': 'whatever'}, headers=tenant_headers)
        assert res.status_code == 400

    def test_current_status_uses_location_timezone(self, app, client, tenant_headers, tenant):
        location = self._location(client, tenant_headers, tenant, GenderPolicy.TIME_BASED)
        client.post(f"/api/gender-policies/locations/{location['id']}/schedules", json={
            'day_of_week': 'monday', 'start_time': '06:00', 'end_time': '12:00', 'gender': 'female'
        }, headers=tenant_headers)
        record = db.session.get(DBLocation, location['id'])

        # 06:30 UTC is 09:30 in Riyadh
        status = gender_policy_service.current_status(record, now=datetime(2026, 10, 19, 6, 30))
        assert status['local_time'] == '2026-10-19T09:30:00'
        assert status['allows_male'] is False
        assert status['current_gender'] == 'female'
        assert status['schedule_ends_at'] == '12:00'
        assert status['status_en'] == 'Open to women only'

        status = gender_policy_service.current_status(record, now=datetime(2026, 10, 19, 10, 0))
        assert status['allows_male'] is True
        assert status['allows_female'] is True
        assert status['current_gender'] is None
