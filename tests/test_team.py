"""
Liyaqa - Team Invite Tests
"""
from datetime import datetime, timedelta

from liyaqa.database import db
from liyaqa.models import DBTeamInvite, InviteStatus, UserRole
from liyaqa.services.team_service import team_service

from tests.conftest import PASSWORD, OWNER_EMAIL, bearer


def invite(client, headers, email='coach@fitnesstime.sa', role=UserRole.STAFF):
    return client.post('/api/team/invites', json={'email': email, 'role': role}, headers=headers)


class TestTenantInvites:
    """Test inviting staff into a tenant team"""

    def test_invite_and_accept(self, client, tenant_headers, tenant_id):
        res = invite(client, tenant_headers, email='Coach@FitnessTime.sa')

        assert res.status_code == 201
        data = res.get_json()
        assert data['invite']['email'] == 'coach@fitnesstime.sa'
        assert data['invite']['tenant_id'] == tenant_id
        assert data['invite']['status'] == InviteStatus.PENDING
        # no mail provider configured under test
        assert data['invite']['email_sent'] is False

        res = client.post('/api/team/invites/accept', json={
            'token': data['token'], 'name': 'Coach Noura', 'password': PASSWORD
        })
        assert res.status_code == 201
        accepted = res.get_json()
        assert accepted['user']['role'] == UserRole.STAFF
        assert accepted['user']['tenant_id'] == tenant_id
        assert client.get('/api/members', headers=bearer(accepted['token'])).status_code == 200

        invites = client.get('/api/team/invites', headers=tenant_headers).get_json()['invites']
        assert invites[0]['status'] == InviteStatus.ACCEPTED

        members = client.get('/api/team/members', headers=tenant_headers).get_json()['members']
        assert {m['email'] for m in members} == {OWNER_EMAIL, 'coach@fitnesstime.sa'}

    def test_token_is_single_use(self, client, tenant_headers):
        token = invite(client, tenant_headers).get_json()['token']
        body = {'token': token, 'name': 'Coach', 'password': PASSWORD}

        assert client.post('/api/team/invites/accept', json=body).status_code == 201
        assert client.post('/api/team/invites/accept', json=body).status_code == 400

    def test_unknown_token(self, client):
        res = client.post('/api/team/invites/accept', json={
            'token': 'not-a-real-token', 'name': 'Nobody', 'password': PASSWORD
        })
        assert res.status_code == 404

    def test_duplicates_rejected(self, client, tenant_headers):
        assert invite(client, tenant_headers).status_code == 201
        assert invite(client, tenant_headers).status_code == 409
        assert invite(client, tenant_headers, email=OWNER_EMAIL).status_code == 409

    def test_role_must_match_team(self, client, tenant_headers):
        assert invite(client, tenant_headers, role=UserRole.PLATFORM_ADMIN).status_code == 400
        assert invite(client, tenant_headers, email='not-an-email').status_code == 400

    def test_revoked_invite_cannot_be_accepted(self, client, tenant_headers):
        data = invite(client, tenant_headers).get_json()

        res = client.delete(f"/api/team/invites/{data['invite']['id']}", headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['status'] == InviteStatus.REVOKED

        res = client.post('/api/team/invites/accept', json={
            'token': data['token'], 'name': 'Coach', 'password': PASSWORD
        })
        assert res.status_code == 400

    def test_expired_invite(self, app, client, tenant_headers):
        data = invite(client, tenant_headers).get_json()
        record = db.session.get(DBTeamInvite, data['invite']['id'])
        record.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()

        assert team_service.expire_invites() == 1
        assert record.status == InviteStatus.EXPIRED

        # a fresh invite is allowed once the old one lapsed
        assert invite(client, tenant_headers).status_code == 201

    def test_change_role_and_deactivate(self, client, tenant_headers):
        token = invite(client, tenant_headers).get_json()['token']
        user = client.post('/api/team/invites/accept', json={
            'token': token, 'name': 'Coach', 'password': PASSWORD
        }).get_json()['user']

        res = client.put(f"/api/team/members/{user['id']}/role", json={'role': UserRole.MANAGER},
                         headers=tenant_headers)
        assert res.status_code == 200
        assert res.get_json()['role'] == UserRole.MANAGER

        res = client.post(f"/api/team/members/{user['id']}/deactivate", headers=tenant_headers)
        assert res.get_json()['is_active'] is False

    def test_staff_cannot_invite(self, client, tenant_headers):
        token = invite(client, tenant_headers).get_json()['token']
        staff_token = client.post('/api/team/invites/accept', json={
            'token': token, 'name': 'Coach', 'password': PASSWORD
        }).get_json()['token']

        assert invite(client, bearer(staff_token), email='friend@fitnesstime.sa').status_code == 403


class TestPlatformInvites:
    """Test inviting platform staff"""

    def test_platform_invite_creates_platform_user(self, client, platform_headers):
        res = invite(client, platform_headers, email='support@liyaqa.com', role=UserRole.SUPPORT)
        assert res.status_code == 201
        assert res.get_json()['invite']['tenant_id'] is None

        user = client.post('/api/team/invites/accept', json={
            'token': res.get_json()['token'], 'name': 'Support', 'password': PASSWORD
        }).get_json()['user']
        assert user['is_platform_user'] is True
        assert user['role'] == UserRole.SUPPORT

    def test_tenant_role_rejected_on_platform_team(self, client, platform_headers):
        res = invite(client, platform_headers, email='x@liyaqa.com', role=UserRole.STAFF)
        assert res.status_code == 400
