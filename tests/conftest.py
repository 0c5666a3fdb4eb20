import pytest
from app import create_app
from config import TestingConfig
from models import db


@pytest.fixture()
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def register_user(client, username='alice', password='secret1'):
    response = client.post('/api/auth/register', json={'username': username, 'password': password})
    assert response.status_code == 201
    return response.get_json()


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture()
def alice(client):
    return register_user(client, 'alice', 'secret1')


@pytest.fixture()
def bob(client):
    return register_user(client, 'bob', 'hunter22')


@pytest.fixture()
def alice_headers(alice):
    return bearer(alice['token'])


@pytest.fixture()
def bob_headers(bob):
    return bearer(bob['token'])
