"""
Liyaqa - Platform Tests
Tenant provisioning and lifecycle, API keys, impersonation and analytics
"""
import re

from liyaqa.models import DBOrganization, TenantStatus, UserRole
from liyaqa.services.platform_analytics_service import platform_analytics_service
from liyaqa.services.tenant_service import slugify

from tests.conftest import OWNER_EMAIL, VAT_NUMBER, bearer


class TestProvisioning:
    """Test tenant provisioning"""

    def test_slugify(self):
        assert slugify('Fitness Time') == 'fitness-time'
        assert slugify('  Gold  Gym!! Riyadh ') == 'gold-gym-riyadh'

    def test_provision_creates_tenant_organization_and_admin(self, tenant):
        assert tenant['tenant']['slug'] == 'fitness-time'
        assert tenant['tenant']['status'] == TenantStatus.TRIAL
        assert tenant['tenant']['plan_name'] == 'pro'
        assert tenant['tenant']['monthly_price_sar'] == '1499.00'
        assert tenant['tenant']['trial_ends_at'] is not None

        assert tenant['organization']['name_en'] == 'Fitness Time'
        assert tenant['organization']['vat_number'] == VAT_NUMBER

        assert tenant['admin']['email'] == OWNER_EMAIL
        assert tenant['admin']['role'] == UserRole.ADMIN
        assert tenant['admin']['tenant_id'] == tenant['tenant']['id']
        assert 'admin_password' not in tenant

    def test_provision_generates_admin_password(self, client, platform_headers):
        res = client.post('/api/platform/tenants', json={
            'name': 'Body Masters', 'admin_email': 'owner@bodymasters.sa'
        }, headers=platform_headers)

        assert res.status_code == 201
        data = res.get_json()
        assert data['tenant']['plan_name'] == 'starter'
        assert data['admin']['name'] == 'Administrator'

        login = client.post('/api/auth/login', json={
            'email': 'owner@bodymasters.sa', 'password': data['admin_password']
        })
        assert login.status_code == 200

    def test_duplicate_slug_and_email(self, client, platform_headers, tenant):
        res = client.post('/api/platform/tenants', json={
            'name': 'Fitness  Time', 'admin_email': 'other@fitnesstime.sa'
        }, headers=platform_headers)
        assert res.status_code == 409

        res = client.post('/api/platform/tenants', json={
            'name': 'Another Gym', 'admin_email': OWNER_EMAIL
        }, headers=platform_headers)
        assert res.status_code == 409

    def test_list_and_filter_tenants(self, client, platform_headers, tenant):
        res = client.get('/api/platform/tenants?search=fitness', headers=platform_headers)

        assert res.status_code == 200
        data = res.get_json()
        assert data['total'] == 1
        assert data['tenants'][0]['id'] == tenant['tenant']['id']

        res = client.get('/api/platform/tenants?status=active', headers=platform_headers)
        assert res.get_json()['total'] == 0

        res = client.get('/api/platform/tenants?status=bogus', headers=platform_headers)
        assert res.status_code == 400

    def test_update_tenant(self, client, platform_headers, tenant_id):
        res = client.put(f'/api/platform/tenants/{tenant_id}', json={
            'plan_name': 'enterprise', 'monthly_price_sar': '2999.00'
        }, headers=platform_headers)

        assert res.status_code == 200
        assert res.get_json()['plan_name'] == 'enterprise'
        assert res.get_json()['monthly_price_sar'] == '2999.00'


class TestTenantLifecycle:
    """Test tenant status transitions"""

    def _action(self, client, headers, tenant_id, action, reason=None):
        return client.post(f'/api/platform/tenants/{tenant_id}/{action}', json={'reason': reason},
                           headers=headers)

    def test_full_lifecycle(self, client, platform_headers, tenant_id):
        res = self._action(client, platform_headers, tenant_id, 'activate')
        assert res.status_code == 200
        assert res.get_json()['status'] == TenantStatus.ACTIVE
        assert res.get_json()['activated_at'] is not None

        res = self._action(client, platform_headers, tenant_id, 'suspend', 'Payment overdue')
        assert res.get_json()['status'] == TenantStatus.SUSPENDED

        res = self._action(client, platform_headers, tenant_id, 'deactivate', 'Closed branch')
        assert res.get_json()['status'] == TenantStatus.DEACTIVATED
        assert res.get_json()['deactivation_reason'] == 'Closed branch'

        res = self._action(client, platform_headers, tenant_id, 'archive')
        assert res.get_json()['status'] == TenantStatus.ARCHIVED

    def test_invalid_transitions(self, client, platform_headers, tenant_id):
        # archive is only reachable from deactivated
        assert self._action(client, platform_headers, tenant_id, 'archive').status_code == 400
        # deactivation needs a reason
        assert self._action(client, platform_headers, tenant_id, 'deactivate').status_code == 400
        assert self._action(client, platform_headers, tenant_id, 'explode').status_code == 404

    def test_suspended_tenant_api_key_rejected(self, client, platform_headers, tenant_id):
        created = client.post(f'/api/platform/tenants/{tenant_id}/api-keys', json={'name': 'Kiosk'},
                              headers=platform_headers).get_json()
        headers = {'X-API-Key': created['key']}
        assert client.get('/api/members', headers=headers).status_code == 200

        self._action(client, platform_headers, tenant_id, 'suspend', 'Unpaid')
        assert client.get('/api/members', headers=headers).status_code == 401


class TestApiKeys:
    """Test tenant API keys"""

    def test_create_use_and_revoke(self, client, platform_headers, tenant_id):
        res = client.post(f'/api/platform/tenants/{tenant_id}/api-keys', json={'name': 'Mobile app'},
                          headers=platform_headers)

        assert res.status_code == 201
        data = res.get_json()
        raw_key = data['key']
        assert re.fullmatch(r'lq_[a-z0-9]{32}', raw_key)
        assert data['api_key']['masked_key'] == f"****{raw_key[-4:]}"
        assert raw_key not in str(data['api_key'])

        res = client.get('/api/members', headers={'X-API-Key': raw_key})
        assert res.status_code == 200

        res = client.get(f'/api/platform/tenants/{tenant_id}/api-keys', headers=platform_headers)
        listed = res.get_json()['api_keys']
        assert len(listed) == 1
        assert listed[0]['last_used_at'] is not None

        res = client.delete(f"/api/platform/api-keys/{data['api_key']['id']}", headers=platform_headers)
        assert res.status_code == 200
        assert res.get_json()['status'] == 'deactivated'

        res = client.get('/api/members', headers={'X-API-Key': raw_key})
        assert res.status_code == 401

        res = client.delete(f"/api/platform/api-keys/{data['api_key']['id']}", headers=platform_headers)
        assert res.status_code == 400

    def test_api_key_cannot_manage_users(self, client, platform_headers, tenant_id):
        raw_key = client.post(f'/api/platform/tenants/{tenant_id}/api-keys', json={'name': 'Integration'},
                              headers=platform_headers).get_json()['key']

        res = client.get('/api/auth/users', headers={'X-API-Key': raw_key})
        assert res.status_code == 403

    def test_unknown_key_and_name_required(self, client, platform_headers, tenant_id):
        res = client.get('/api/members', headers={'X-API-Key': 'lq_' + 'a' * 32})
        assert res.status_code == 401

        res = client.post(f'/api/platform/tenants/{tenant_id}/api-keys', json={}, headers=platform_headers)
        assert res.status_code == 400


class TestImpersonation:
    """Test support impersonation sessions"""

    def test_start_use_and_end(self, client, platform_headers, tenant):
        target_id = tenant['admin']['id']
        res = client.post('/api/platform/impersonation', json={
            'target_user_id': target_id, 'reason': 'Ticket #4411 billing question'
        }, headers=platform_headers)

        assert res.status_code == 201
        data = res.get_json()
        session_id = data['session']['id']
        assert data['session']['status'] == 'active'
        assert data['session']['tenant_id'] == tenant['tenant']['id']

        me = client.get('/api/auth/me', headers=bearer(data['token'])).get_json()
        assert me['id'] == target_id
        assert me['impersonation']['session_id'] == session_id

        active = client.get('/api/platform/impersonation/active', headers=platform_headers).get_json()
        assert [s['id'] for s in active['sessions']] == [session_id]

        res = client.post(f'/api/platform/impersonation/{session_id}/end', headers=platform_headers)
        assert res.status_code == 200
        assert res.get_json()['status'] == 'ended'

        # the impersonation token dies with its session
        assert client.get('/api/auth/me', headers=bearer(data['token'])).status_code == 401

        history = client.get('/api/platform/impersonation/history', headers=platform_headers).get_json()
        assert history['total'] == 1

    def test_new_session_supersedes_previous(self, client, platform_headers, tenant):
        body = {'target_user_id': tenant['admin']['id'], 'reason': 'Checking member import'}
        first = client.post('/api/platform/impersonation', json=body, headers=platform_headers).get_json()
        second = client.post('/api/platform/impersonation', json=body, headers=platform_headers).get_json()

        active = client.get('/api/platform/impersonation/active', headers=platform_headers).get_json()
        assert [s['id'] for s in active['sessions']] == [second['session']['id']]
        assert client.get('/api/auth/me', headers=bearer(first['token'])).status_code == 401

    def test_reason_required(self, client, platform_headers, tenant):
        res = client.post('/api/platform/impersonation', json={
            'target_user_id': tenant['admin']['id'], 'reason': 'hi'
        }, headers=platform_headers)
        assert res.status_code == 400

    def test_platform_user_cannot_be_impersonated(self, client, platform_headers, super_admin):
        res = client.post('/api/platform/impersonation', json={
            'target_user_id': super_admin['user']['id'], 'reason': 'Looking around'
        }, headers=platform_headers)
        assert res.status_code == 403

    def test_suspended_tenant_cannot_be_impersonated(self, client, platform_headers, tenant):
        client.post(f"/api/platform/tenants/{tenant['tenant']['id']}/suspend", json={'reason': 'Unpaid'},
                    headers=platform_headers)
        res = client.post('/api/platform/impersonation', json={
            'target_user_id': tenant['admin']['id'], 'reason': 'Checking invoices'
        }, headers=platform_headers)
        assert res.status_code == 400

    def test_force_end(self, client, platform_headers, tenant):
        session_id = client.post('/api/platform/impersonation', json={
            'target_user_id': tenant['admin']['id'], 'reason': 'Escalated support case'
        }, headers=platform_headers).get_json()['session']['id']

        res = client.post(f'/api/platform/impersonation/{session_id}/force-end', headers=platform_headers)
        assert res.get_json()['status'] == 'force_ended'

        res = client.post(f'/api/platform/impersonation/{session_id}/end', headers=platform_headers)
        assert res.status_code == 400


class TestPlatformAnalytics:
    """Test the analytics dashboard and exports"""

    def test_dashboard(self, client, platform_headers, tenant_id, member):
        client.post(f'/api/platform/tenants/{tenant_id}/activate', headers=platform_headers)

        res = client.get('/api/platform/analytics/dashboard', headers=platform_headers)

        assert res.status_code == 200
        overview = res.get_json()['overview']
        assert overview['total_tenants'] == 1
        assert overview['active_tenants'] == 1
        assert overview['trial_tenants'] == 0
        assert overview['total_end_users'] == 1
        assert overview['mrr'] == '1499.00'
        assert overview['arr'] == '17988.00'
        assert res.get_json()['revenue_breakdown'][0]['plan_name'] == 'pro'
        assert len(res.get_json()['tenant_growth']) == 12

    def test_churn(self, client, platform_headers, tenant_id):
        client.post(f'/api/platform/tenants/{tenant_id}/deactivate', json={'reason': 'Too expensive'},
                    headers=platform_headers)

        res = client.get('/api/platform/analytics/churn', headers=platform_headers)

        assert res.status_code == 200
        assert res.get_json()['churn_reasons'] == [{'reason': 'Too expensive', 'count': 1, 'percentage': 100.0}]

    def test_risk_score_for_idle_trial(self, app, tenant_id):
        tenants = platform_analytics_service.at_risk_tenants()
        assert tenants[0]['tenant_id'] == tenant_id
        assert 'No members' in tenants[0]['risk_factors']
        assert tenants[0]['risk_score'] >= 40

    def test_csv_export(self, client, platform_headers, tenant):
        res = client.get('/api/platform/analytics/export?type=growth&format=csv', headers=platform_headers)

        assert res.status_code == 200
        assert res.mimetype == 'text/csv'
        assert 'analytics_growth_' in res.headers['Content-Disposition']
        assert res.headers['Content-Disposition'].endswith('.csv"')
        text = res.data.decode('utf-8-sig')
        lines = text.splitlines()
        assert lines[0] == 'Month,New Tenants,Churned Tenants,Net Growth'
        assert lines[1].startswith('الشهر')

    def test_pdf_export(self, client, platform_headers, tenant):
        res = client.get('/api/platform/analytics/export?type=full&format=pdf', headers=platform_headers)

        assert res.status_code == 200
        assert res.mimetype == 'application/pdf'
        assert res.data.startswith(b'%PDF')

    def test_invalid_export(self, client, platform_headers):
        res = client.get('/api/platform/analytics/export?type=profits&format=csv', headers=platform_headers)
        assert res.status_code == 400
        res = client.get('/api/platform/analytics/export?type=full&format=xlsx', headers=platform_headers)
        assert res.status_code == 400


class TestScheduler:
    """Test scheduler endpoints with the scheduler disabled"""

    def test_status_and_unknown_job(self, client, platform_headers):
        res = client.get('/api/platform/scheduler/status', headers=platform_headers)
        assert res.status_code == 200
        assert res.get_json()['status'] == 'not_initialized'

        res = client.post('/api/platform/scheduler/jobs/nope/run', headers=platform_headers)
        assert res.status_code == 404


class TestOrganizationRecord:

    def test_provisioned_organization_persisted(self, app, tenant):
        organization = DBOrganization.query.filter_by(tenant_id=tenant['tenant']['id']).one()
        assert organization.name_ar == 'وقت اللياقة'
