"""
Pytest configuration and shared fixtures.

Every test gets a fresh app on an in-memory SQLite database with CSRF off,
plus a society on its trial plan and a logged-in client helper.
"""
import sys
from pathlib import Path

import pytest

# The flat modules (`app`, `ledger`, ...) import without an editable install
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


ADMIN_EMAIL = 'admin@greenvalley.test'
ADMIN_PASSWORD = 'secret123'


@pytest.fixture
def app():
    from app import create_app
    from app_models import db
    from config import TestingConfig

    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def society(app):
    import subscriptions

    return subscriptions.create_society(
        'Green Valley Society', 'office@greenvalley.test', ADMIN_EMAIL, ADMIN_PASSWORD, admin_name='Asha Rao',
    )


@pytest.fixture
def admin_user(society):
    from app_models import User

    return User.query.filter_by(email=ADMIN_EMAIL).first()


@pytest.fixture
def add_member(society):
    """Factory creating members of the fixture society"""
    import society_services

    counter = {'n': 0}

    def _add(name=None, phone=None, **kwargs):
        counter['n'] += 1
        return society_services.add_member(
            society,
            name or f"Member {counter['n']}",
            phone or f"98765{counter['n']:05d}",
            **kwargs,
        )
    return _add


def login(client, email, password):
    return client.post('/api/login', json={'email': email, 'password': password})


@pytest.fixture
def admin_client(client, admin_user):
    response = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert response.status_code == 200
    return client
