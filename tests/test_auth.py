"""
Liyaqa - Authentication Tests
"""
from liyaqa.models import DBUser, UserRole, Permission, ROLE_PERMISSIONS
from liyaqa.services.auth_service import validate_password, generate_password

from tests.conftest import PASSWORD, ROOT_EMAIL, OWNER_EMAIL, bearer


class TestPasswordRules:
    """Test password validation"""

    def test_strong_password_accepted(self):
        assert validate_password(PASSWORD) == (True, None)

    def test_weak_passwords_rejected(self):
        assert validate_password('')[0] is False
        assert validate_password('Sh0rt')[0] is False
        assert validate_password('alllowercase1')[0] is False
        assert validate_password('ALLUPPERCASE1')[0] is False
        assert validate_password('NoDigitsHere')[0] is False

    def test_generated_password_is_valid(self):
        for _ in range(5):
            assert validate_password(generate_password())[0] is True


class TestUserModel:
    """Test DBUser"""

    def test_email_normalized_and_password_hashed(self, app):
        user = DBUser(email='  Coach@Club.SA ', name='Coach', password=PASSWORD, role=UserRole.STAFF,
                      tenant_id='tenant_x')

        assert user.email == 'coach@club.sa'
        assert user.password_hash != PASSWORD
        assert user.verify_password(PASSWORD) is True
        assert user.verify_password('wrong') is False
        assert 'password_hash' not in user.to_dict()

    def test_platform_user_has_no_tenant(self, app):
        user = DBUser(email='ops@liyaqa.com', name='Ops', password=PASSWORD, role=UserRole.SUPPORT)

        assert user.is_platform_user is True
        assert user.has_permission(Permission.IMPERSONATE) is True
        assert user.has_permission(Permission.TENANTS_MANAGE) is False

    def test_role_permissions(self):
        assert Permission.IMPERSONATION_ADMIN in ROLE_PERMISSIONS[UserRole.SUPER_ADMIN]
        assert Permission.IMPERSONATION_ADMIN not in ROLE_PERMISSIONS[UserRole.PLATFORM_ADMIN]
        assert Permission.AUDIT_VIEW in ROLE_PERMISSIONS[UserRole.ADMIN]
        assert Permission.MEMBERS_MANAGE not in ROLE_PERMISSIONS[UserRole.VIEWER]
        assert Permission.TENANTS_VIEW not in ROLE_PERMISSIONS[UserRole.ADMIN]


class TestBootstrapAndLogin:
    """Test the auth endpoints"""

    def test_bootstrap_only_once(self, client, super_admin):
        assert super_admin['user']['role'] == UserRole.SUPER_ADMIN
        assert 'password' not in super_admin

        res = client.post('/api/auth/bootstrap', json={'email': 'second@liyaqa.com', 'password': PASSWORD})
        assert res.status_code == 409

    def test_bootstrap_generates_password(self, client):
        res = client.post('/api/auth/bootstrap', json={'email': ROOT_EMAIL})

        assert res.status_code == 201
        data = res.get_json()
        assert validate_password(data['password'])[0] is True
        assert 'warning' in data

    def test_login(self, client, super_admin):
        res = client.post('/api/auth/login', json={'email': ROOT_EMAIL.upper(), 'password': PASSWORD})

        assert res.status_code == 200
        data = res.get_json()
        assert data['token']
        assert data['expires_in'] == 24 * 3600
        assert data['user']['last_login'] is not None

    def test_login_wrong_password(self, client, super_admin):
        res = client.post('/api/auth/login', json={'email': ROOT_EMAIL, 'password': 'Wrong0ne!'})
        assert res.status_code == 401

    def test_login_requires_fields(self, client):
        res = client.post('/api/auth/login', json={'email': ROOT_EMAIL})
        assert res.status_code == 400

    def test_me(self, client, platform_headers):
        res = client.get('/api/auth/me', headers=platform_headers)

        assert res.status_code == 200
        data = res.get_json()
        assert data['email'] == ROOT_EMAIL
        assert Permission.TENANTS_MANAGE in data['permissions']

    def test_missing_and_invalid_token(self, client):
        assert client.get('/api/auth/me').status_code == 401
        assert client.get('/api/auth/me', headers=bearer('not-a-jwt')).status_code == 401

    def test_change_password(self, client, platform_headers):
        res = client.post('/api/auth/change-password', json={
            'current_password': PASSWORD, 'new_password': 'N3wSecret!'
        }, headers=platform_headers)
        assert res.status_code == 200

        res = client.post('/api/auth/login', json={'email': ROOT_EMAIL, 'password': 'N3wSecret!'})
        assert res.status_code == 200


class TestTenantScope:
    """Test tenant binding of principals"""

    def test_tenant_admin_cannot_use_platform_routes(self, client, tenant_headers):
        res = client.get('/api/platform/tenants', headers=tenant_headers)
        assert res.status_code == 403

    def test_tenant_user_cannot_switch_tenant(self, client, tenant_headers):
        headers = dict(tenant_headers, **{'X-Tenant-ID': 'tenant_other'})
        res = client.get('/api/members', headers=headers)
        assert res.status_code == 403

    def test_platform_user_must_pick_tenant(self, client, platform_headers, tenant_id):
        assert client.get('/api/members', headers=platform_headers).status_code == 400

        headers = dict(platform_headers, **{'X-Tenant-ID': tenant_id})
        assert client.get('/api/members', headers=headers).status_code == 200

        headers = dict(platform_headers, **{'X-Tenant-ID': 'tenant_missing'})
        assert client.get('/api/members', headers=headers).status_code == 404

    def test_suspended_tenant_cannot_login(self, client, platform_headers, tenant_id):
        res = client.post(f'/api/platform/tenants/{tenant_id}/suspend', json={'reason': 'Unpaid'},
                          headers=platform_headers)
        assert res.status_code == 200

        res = client.post('/api/auth/login', json={'email': OWNER_EMAIL, 'password': PASSWORD})
        assert res.status_code == 403


class TestStaffUsers:
    """Test tenant staff management"""

    def test_admin_creates_staff_with_limited_permissions(self, client, tenant_headers, tenant_id):
        res = client.post('/api/auth/users', json={
            'email': 'desk@fitnesstime.sa', 'name': 'Front Desk', 'password': PASSWORD, 'role': UserRole.STAFF
        }, headers=tenant_headers)

        assert res.status_code == 201
        assert res.get_json()['tenant_id'] == tenant_id

        login = client.post('/api/auth/login', json={'email': 'desk@fitnesstime.sa', 'password': PASSWORD})
        staff_headers = bearer(login.get_json()['token'])
        assert client.get('/api/members', headers=staff_headers).status_code == 200
        assert client.get('/api/auth/users', headers=staff_headers).status_code == 403

    def test_platform_role_rejected_for_tenant_user(self, client, tenant_headers):
        res = client.post('/api/auth/users', json={
            'email': 'sneaky@fitnesstime.sa', 'name': 'Sneaky', 'password': PASSWORD,
            'role': UserRole.SUPER_ADMIN
        }, headers=tenant_headers)
        assert res.status_code == 400

    def test_deactivated_user_token_rejected(self, client, tenant_headers):
        res = client.post('/api/auth/users', json={
            'email': 'temp@fitnesstime.sa', 'name': 'Temp', 'password': PASSWORD, 'role': UserRole.VIEWER
        }, headers=tenant_headers)
        user_id = res.get_json()['id']
        token = client.post('/api/auth/login', json={
            'email': 'temp@fitnesstime.sa', 'password': PASSWORD
        }).get_json()['token']

        assert client.delete(f'/api/auth/users/{user_id}', headers=tenant_headers).status_code == 200
        assert client.get('/api/auth/me', headers=bearer(token)).status_code == 401
