"""
Liyaqa - Test fixtures
Every test gets a fresh app bound to an in-memory SQLite database.
"""
import pytest

from liyaqa import create_app
from liyaqa.database import db

PASSWORD = 'Str0ng!Pass1'
ROOT_EMAIL = 'root@liyaqa.com'
OWNER_EMAIL = 'owner@fitnesstime.sa'
VAT_NUMBER = '300000000000003'


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def super_admin(client):
    res = client.post('/api/auth/bootstrap', json={
        'email': ROOT_EMAIL,
        'name': 'Root',
        'password': PASSWORD
    })
    assert res.status_code == 201, res.data
    return res.get_json()


@pytest.fixture
def platform_headers(super_admin):
    return bearer(super_admin['token'])


@pytest.fixture
def tenant(client, platform_headers):
    res = client.post('/api/platform/tenants', json={
        'name': 'Fitness Time',
        'name_ar': 'وقت اللياقة',
        'admin_email': OWNER_EMAIL,
        'admin_password': PASSWORD,
        'plan_name': 'pro',
        'monthly_price_sar': '1499.00',
        'city': 'Riyadh',
        'vat_number': VAT_NUMBER
    }, headers=platform_headers)
    assert res.status_code == 201, res.data
    return res.get_json()


@pytest.fixture
def tenant_id(tenant):
    return tenant['tenant']['id']


@pytest.fixture
def tenant_headers(client, tenant):
    res = client.post('/api/auth/login', json={'email': OWNER_EMAIL, 'password': PASSWORD})
    assert res.status_code == 200, res.data
    return bearer(res.get_json()['token'])


@pytest.fixture
def member(client, tenant_headers):
    res = client.post('/api/members', json={
        'first_name': 'Sara',
        'last_name': 'Alqahtani',
        'email': 'sara@example.sa',
        'phone': '+966500000001',
        'gender': 'female',
        'preferred_language': 'en'
    }, headers=tenant_headers)
    assert res.status_code == 201, res.data
    return res.get_json()
