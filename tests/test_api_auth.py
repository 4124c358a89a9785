"""Tests for /api/auth endpoints."""
import json

from conftest import login


SIGNUP = {
    'email': 'New.Driver@Example.com ',
    'password': 'hunter22',
    'displayName': 'Noor Newcomer',
    'carNumber': 'dl01ca4321',
    'phoneNumber': '555-0199',
}


class TestSignup:
    """Test suite for POST /api/auth/signup."""

    def test_signup_creates_user_and_session(self, client, store):
        response = client.post('/api/auth/signup', json=SIGNUP)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['user']['email'] == 'new.driver@example.com'
        assert data['user']['carNumber'] == 'DL01CA4321'
        assert data['user']['role'] == 'user'
        assert 'passwordHash' not in data['user']

        me = json.loads(client.get('/api/auth/me').data)
        assert me['user']['uid'] == data['user']['uid']

    def test_password_is_hashed(self, client, store):
        client.post('/api/auth/signup', json=SIGNUP)
        stored = list(store.users.values())[0]
        assert stored.password_hash != SIGNUP['password']

    def test_missing_fields(self, client):
        response = client.post('/api/auth/signup', json={'email': 'a@b.c', 'password': 'x'})
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Missing required fields'

    def test_duplicate_email_or_car(self, client, driver):
        by_email = dict(SIGNUP, email=driver.email)
        by_car = dict(SIGNUP, carNumber='mh20ee7602')

        for payload in (by_email, by_car):
            response = client.post('/api/auth/signup', json=payload)
            assert response.status_code == 409


class TestLogin:
    """Test suite for login, logout and the current user."""

    def test_login_by_email(self, client, driver):
        response = login(client, 'DRIVER@example.com')
        assert response.status_code == 200
        assert json.loads(response.data)['user']['displayName'] == 'Dana Driver'

    def test_login_by_car_number(self, client, driver):
        response = login(client, 'mh20ee7602')
        assert response.status_code == 200

    def test_wrong_password(self, client, driver):
        response = login(client, driver.email, password='nope')
        assert response.status_code == 401
        assert json.loads(response.data) == {'error': 'Invalid credentials'}

    def test_unknown_user(self, client):
        assert login(client, 'ghost@example.com').status_code == 401

    def test_missing_credentials(self, client):
        response = client.post('/api/auth/login', json={'identification': 'x'})
        assert response.status_code == 400

    def test_me_without_session(self, client):
        response = client.get('/api/auth/me')
        assert response.status_code == 200
        assert json.loads(response.data) == {'user': None}

    def test_logout_ends_session(self, driver_client):
        assert json.loads(driver_client.get('/api/auth/me').data)['user'] is not None

        response = driver_client.post('/api/auth/logout')
        assert response.status_code == 200

        assert json.loads(driver_client.get('/api/auth/me').data)['user'] is None

    def test_session_cookie_settings(self, app):
        assert app.config['SESSION_COOKIE_HTTPONLY'] is True
        assert app.config['SESSION_COOKIE_SAMESITE'] == 'Lax'
        assert app.config['PERMANENT_SESSION_LIFETIME'].days == 7
