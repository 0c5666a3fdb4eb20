import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

import auth
from models import db, User
from tokens import verify_token
from tests.conftest import register_user


def test_register_returns_token_and_user(app, client):
    response = client.post('/api/auth/register', json={'username': 'alice', 'password': 'secret1'})

    assert response.status_code == 201
    data = response.get_json()
    assert set(data) == {'token', 'user'}
    assert data['user']['username'] == 'alice'
    assert set(data['user']) == {'id', 'username'}

    with app.app_context():
        assert verify_token(data['token']) == {'userId': data['user']['id'], 'username': 'alice'}


def test_register_stores_password_hash(app, client):
    register_user(client, 'alice', 'secret1')

    with app.app_context():
        user = User.query.filter_by(username='alice').one()
        assert user.password_hash != 'secret1'
        assert user.password_hash.startswith('$2')
        assert user.created_at is not None
        assert user.updated_at is not None


@pytest.mark.parametrize('body', [
    {},
    {'username': 'alice'},
    {'password': 'secret1'},
    {'username': '', 'password': 'secret1'},
    {'username': 'alice', 'password': ''},
    {'username': None, 'password': 'secret1'},
    {'username': 123, 'password': 'secret1'},
])
def test_register_requires_username_and_password(client, body):
    response = client.post('/api/auth/register', json=body)

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Username and password are required'}


def test_register_without_json_body(client):
    response = client.post('/api/auth/register', data='not json', content_type='text/plain')

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Username and password are required'}


@pytest.mark.parametrize('password', ['a', '12345', 'abcde'])
def test_register_rejects_short_password(client, password):
    response = client.post('/api/auth/register', json={'username': 'alice', 'password': password})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Password must be at least 6 characters long'}


def test_register_accepts_six_character_password(client):
    response = client.post('/api/auth/register', json={'username': 'alice', 'password': '123456'})
    assert response.status_code == 201


@pytest.mark.parametrize('second_password', ['secret1', 'different-password'])
def test_register_duplicate_username(client, second_password):
    register_user(client, 'alice', 'secret1')

    response = client.post('/api/auth/register', json={'username': 'alice', 'password': second_password})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Username already exists'}


def test_username_lookup_is_case_sensitive(client):
    register_user(client, 'alice', 'secret1')

    response = client.post('/api/auth/register', json={'username': 'Alice', 'password': 'secret1'})
    assert response.status_code == 201


def test_register_unique_violation_on_commit_is_conflict(client, monkeypatch):
    def commit():
        raise IntegrityError('INSERT INTO users', {}, Exception('UNIQUE constraint failed'))

    monkeypatch.setattr(db.session, 'commit', commit)

    response = client.post('/api/auth/register', json={'username': 'alice', 'password': 'secret1'})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Username already exists'}


def test_register_storage_failure_is_generic_500(client, monkeypatch):
    def commit():
        raise OperationalError('INSERT INTO users', {}, Exception('database is locked'))

    monkeypatch.setattr(db.session, 'commit', commit)

    response = client.post('/api/auth/register', json={'username': 'alice', 'password': 'secret1'})

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}


def test_login_issues_token_for_same_identity(app, client):
    registered = register_user(client, 'alice', 'secret1')

    response = client.post('/api/auth/login', json={'username': 'alice', 'password': 'secret1'})

    assert response.status_code == 200
    data = response.get_json()
    assert data['user'] == registered['user']
    with app.app_context():
        assert verify_token(data['token']) == {'userId': registered['user']['id'], 'username': 'alice'}


@pytest.mark.parametrize('body', [
    {'username': 'nobody', 'password': 'secret1'},
    {'username': 'alice', 'password': 'wrong-password'},
    {'username': 'ALICE', 'password': 'secret1'},
])
def test_login_failures_are_indistinguishable(client, body):
    register_user(client, 'alice', 'secret1')

    response = client.post('/api/auth/login', json=body)

    assert response.status_code == 401
    assert response.get_json() == {'error': 'Invalid credentials'}


@pytest.mark.parametrize('body', [
    {},
    {'username': 'alice'},
    {'password': 'secret1'},
    {'username': '', 'password': ''},
])
def test_login_requires_username_and_password(client, body):
    response = client.post('/api/auth/login', json=body)

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Username and password are required'}


def test_login_storage_failure_is_generic_500(client, monkeypatch):
    class BrokenQuery:
        def filter_by(self, **kwargs):
            raise OperationalError('SELECT', {}, Exception('connection refused'))

    class BrokenUser:
        query = BrokenQuery()

    monkeypatch.setattr(auth, 'User', BrokenUser)

    response = client.post('/api/auth/login', json={'username': 'alice', 'password': 'secret1'})

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}


def test_extra_fields_are_ignored(client):
    response = client.post('/api/auth/register',
                           json={'username': 'alice', 'password': 'secret1', 'role': 'admin'})
    assert response.status_code == 201
