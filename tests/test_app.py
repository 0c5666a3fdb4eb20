import logging

import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from config import Config, TestingConfig, get_config, DevelopmentConfig, ProductionConfig
from models import db


def test_home(client):
    response = client.get('/')

    assert response.status_code == 200
    assert response.get_json()['message'] == 'Task Management API is running!'


def test_health_check(client):
    response = client.get('/health')

    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'healthy'
    assert data['database'] == 'connected'


def test_health_check_reports_database_failure(client, monkeypatch):
    def execute(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(db.session, 'execute', execute)

    response = client.get('/health')

    assert response.status_code == 503
    assert response.get_json()['status'] == 'unhealthy'


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nothing-here')

    assert response.status_code == 404
    assert response.get_json() == {'error': 'Not found'}


def test_wrong_method_is_json_405(client):
    response = client.patch('/api/tasks')

    assert response.status_code == 405
    assert response.get_json() == {'error': 'Method not allowed'}


def test_security_headers(client):
    response = client.get('/')

    assert response.headers['X-Content-Type-Options'] == 'nosniff'
    assert response.headers['X-Frame-Options'] == 'DENY'


def test_testing_config(app):
    assert app.testing
    assert app.config['SQLALCHEMY_DATABASE_URI'] == 'sqlite:///:memory:'
    assert app.extensions['bcrypt'] is not None


@pytest.mark.parametrize('env, expected', [
    ('development', DevelopmentConfig),
    ('production', ProductionConfig),
    ('testing', TestingConfig),
    ('unknown', DevelopmentConfig),
])
def test_get_config(monkeypatch, env, expected):
    monkeypatch.setenv('FLASK_ENV', env)
    assert get_config() is expected


def test_validate_requires_secrets_in_production(monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'production')
    for key in ('SECRET_KEY', 'JWT_SECRET_KEY', 'JWT_SECRET', 'DATABASE_URL'):
        monkeypatch.delenv(key, raising=False)

    with pytest.raises(ValueError, match='SECRET_KEY'):
        Config.validate()


def test_validate_accepts_complete_production_env(monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'production')
    monkeypatch.setenv('SECRET_KEY', 'a-real-secret')
    monkeypatch.setenv('JWT_SECRET', 'a-real-jwt-secret')
    monkeypatch.setenv('DATABASE_URL', 'postgresql://user:pass@db/tasks')

    Config.validate()


def test_validate_is_skipped_outside_production(monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'development')
    monkeypatch.delenv('SECRET_KEY', raising=False)

    Config.validate()


def test_log_lines_are_written_once(tmp_path):
    class FileLoggingConfig(ProductionConfig):
        SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
        SQLALCHEMY_ENGINE_OPTIONS = {}
        LOG_DIR = str(tmp_path)

    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        create_app(FileLoggingConfig)
        app = create_app(FileLoggingConfig)
        app.test_client().get('/')

        for handler in root.handlers:
            handler.flush()
        lines = (tmp_path / 'app.log').read_text().splitlines()
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)

    assert sum('Request: GET /' in line for line in lines) == 1
    assert sum('Application startup' in line for line in lines) == 2
