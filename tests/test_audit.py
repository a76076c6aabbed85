"""
Liyaqa - Audit Trail Tests
"""
from datetime import datetime, timedelta

from liyaqa.database import db
from liyaqa.models import UserRole
from liyaqa.services.audit_service import audit_service

from tests.conftest import PASSWORD, OWNER_EMAIL, bearer


class TestAuditService:
    """Test writing audit entries"""

    def test_log_outside_request(self, app):
        entry = audit_service.log(
            action=audit_service.ACTION_EXPORT,
            resource_type=audit_service.RESOURCE_ANALYTICS,
            description='Nightly export',
            metadata={'rows': 12}
        )

        assert entry.endpoint is None
        assert entry.to_dict()['metadata'] == {'rows': 12}
        assert entry.status == 'success'

    def test_cleanup_old_logs(self, app):
        old = audit_service.log(action=audit_service.ACTION_EXPORT, resource_type=audit_service.RESOURCE_ANALYTICS)
        audit_service.log(action=audit_service.ACTION_EXPORT, resource_type=audit_service.RESOURCE_ANALYTICS)
        old.created_at = datetime.utcnow() - timedelta(days=400)
        db.session.commit()

        assert audit_service.cleanup_old_logs(days=365) == 1


class TestAuditRoutes:
    """Test reading the audit trail"""

    def test_tenant_sees_own_events(self, client, tenant_headers, tenant_id, member):
        res = client.get('/api/audit/logs?resource_type=member', headers=tenant_headers)

        assert res.status_code == 200
        data = res.get_json()
        assert data['total'] == 1
        assert data['logs'][0]['resource_id'] == member['id']
        assert data['logs'][0]['action'] == audit_service.ACTION_CREATE
        assert data['logs'][0]['user_email'] == OWNER_EMAIL

        # a tenant cannot widen its scope
        res = client.get('/api/audit/logs?tenant_id=tenant_other', headers=tenant_headers)
        assert {entry['tenant_id'] for entry in res.get_json()['logs']} == {tenant_id}

    def test_platform_scope(self, client, platform_headers, tenant_id, tenant_headers):
        client.post('/api/auth/login', json={'email': 'nobody@liyaqa.com', 'password': 'wrong'})

        res = client.get('/api/audit/logs?limit=200', headers=platform_headers)
        tenants = {entry['tenant_id'] for entry in res.get_json()['logs']}
        assert None in tenants
        assert tenant_id in tenants

        res = client.get(f"/api/audit/logs?tenant_id={tenant_id}", headers=platform_headers)
        assert {entry['tenant_id'] for entry in res.get_json()['logs']} == {tenant_id}

    def test_failed_logins_are_recorded(self, client, tenant_headers, tenant_id):
        client.post('/api/auth/login', json={'email': OWNER_EMAIL, 'password': 'not-it'})

        res = client.get('/api/audit/logs?action=login&status=failure', headers=tenant_headers)
        logs = res.get_json()['logs']
        assert len(logs) == 1
        assert logs[0]['error_message'] == 'Invalid credentials'

        stats = client.get('/api/audit/stats?days=7', headers=tenant_headers).get_json()
        assert stats['period_days'] == 7
        assert stats['failures'] == 1
        assert stats['by_action'][audit_service.ACTION_LOGIN] >= 2

    def test_pagination(self, client, tenant_headers):
        for name in ('Ahmed', 'Noura', 'Faisal'):
            client.post('/api/members', json={'first_name': name}, headers=tenant_headers)

        res = client.get('/api/audit/logs?resource_type=member&limit=2&page=2', headers=tenant_headers)
        data = res.get_json()
        assert data['total'] == 3
        assert data['offset'] == 2
        assert len(data['logs']) == 1

    def test_staff_cannot_read_audit(self, client, tenant_headers):
        token = client.post('/api/team/invites', json={
            'email': 'coach@fitnesstime.sa', 'role': UserRole.STAFF
        }, headers=tenant_headers).get_json()['token']
        staff_token = client.post('/api/team/invites/accept', json={
            'token': token, 'name': 'Coach', 'password': PASSWORD
        }).get_json()['token']

        assert client.get('/api/audit/logs', headers=bearer(staff_token)).status_code == 403

    def test_resource_history(self, client, tenant_headers, member):
        client.put(f"/api/members/{member['id']}", json={'phone': '+966500000002'}, headers=tenant_headers)

        res = client.get(f"/api/audit/resources/member/{member['id']}", headers=tenant_headers)
        assert res.status_code == 200
        history = res.get_json()['history']
        assert sorted(entry['action'] for entry in history) == [
            audit_service.ACTION_CREATE, audit_service.ACTION_UPDATE
        ]
        assert {entry['resource_id'] for entry in history} == {member['id']}

        # unknown records have no history
        res = client.get('/api/audit/resources/member/member_unknown', headers=tenant_headers)
        assert res.get_json()['history'] == []
