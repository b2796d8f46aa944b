from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import Plot, User, seed_demo_data
from app.core.permissions import Caller


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    PLOT_LOCK_TIMEOUT = 5
    LOG_LEVEL = "WARNING"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, usable from several threads."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'cemetery.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        db.session.remove()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, email: str, password: str):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def login_admin(client):
    return lambda: _login(client, "admin@cemetery.local", "admin123")


@pytest.fixture
def login_staff(client):
    return lambda: _login(client, "staff@cemetery.local", "staff123")


@pytest.fixture
def login_visitor(client):
    return lambda: _login(client, "ana@visitor.local", "visitor123")


@pytest.fixture
def login_second_visitor(client):
    return lambda: _login(client, "bruno@visitor.local", "visitor123")


def caller_for(email: str) -> Caller:
    user = User.query.filter_by(email=email).one()
    return Caller(user_id=user.id, role=user.role)


@pytest.fixture
def plot_ids(app) -> dict[str, int]:
    return {plot.plot_code: plot.id for plot in Plot.query.all()}


@pytest.fixture
def admin(app) -> Caller:
    return caller_for("admin@cemetery.local")


@pytest.fixture
def staff(app) -> Caller:
    return caller_for("staff@cemetery.local")


@pytest.fixture
def ana(app) -> Caller:
    return caller_for("ana@visitor.local")


@pytest.fixture
def bruno(app) -> Caller:
    return caller_for("bruno@visitor.local")
