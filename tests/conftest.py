from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.mailer import EmailSendError
from app.core.models import Documento, User, seed_demo_data
from app.tramites.services import create_tramite, open_tramite, read_tramite


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    MAIL_BACKEND = "console"


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def kinds_for(self, user_id):
        return [e.kind.value for e in self.events if e.user_id == user_id]


class FakeCodeMailer:
    def __init__(self):
        self.codes = []
        self.lockouts = []
        self.fail = False

    def send_code(self, email, name, code, document_title, tramite_code, expiry_minutes):
        if self.fail:
            raise EmailSendError("SMTP no disponible")
        self.codes.append(code)

    def send_lockout_notice(self, email, name, lockout_minutes):
        self.lockouts.append((email, lockout_minutes))

    @property
    def last_code(self):
        return self.codes[-1]


def _seeded_app():
    app = create_app(TestConfig)
    app.extensions["notification_sink"] = RecordingSink()
    app.extensions["code_mailer"] = FakeCodeMailer()
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
    return app


def _user_ids():
    by_email = {u.correo: u.id for u in User.query.all()}
    return {
        "admin": by_email["admin@tramites.local"],
        "resp": by_email["resp@tramites.local"],
        "trab": by_email["trab@tramites.local"],
        "trab2": by_email["trab2@tramites.local"],
        "inactivo": by_email["inactivo@tramites.local"],
    }


def _doc_ids():
    by_title = {d.titulo: d.id for d in Documento.query.all()}
    return {
        "contrato": by_title["Contrato 2026 - Juan Perez"],
        "memorando": by_title["Memorando de horario"],
        "comunicado": by_title["Comunicado de vacaciones"],
        "contrato_v2": by_title["Contrato 2026 - Juan Perez (corregido)"],
    }


@pytest.fixture
def app():
    app = _seeded_app()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def sink(app):
    return app.extensions["notification_sink"]


@pytest.fixture
def mailer(app):
    return app.extensions["code_mailer"]


@pytest.fixture
def users(app):
    return _user_ids()


@pytest.fixture
def docs(app):
    return _doc_ids()


@pytest.fixture
def new_tramite(users, docs):
    def _create(doc="contrato", receptor="trab", estado="ENVIADO", asunto="Firma de contrato"):
        tramite = create_tramite(
            {"id_documento": docs[doc], "id_receptor": users[receptor], "asunto": asunto},
            users["resp"],
        )
        if estado in {"ABIERTO", "LEIDO"}:
            open_tramite(tramite.id, users[receptor])
        if estado == "LEIDO":
            read_tramite(tramite.id, users[receptor])
        return tramite.id

    return _create


# HTTP tests run without a pushed app context so every request gets its own
# context (and its own flask-login user) like in production.
@pytest.fixture
def api_app():
    app = _seeded_app()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def api_ids(api_app):
    with api_app.app_context():
        return _user_ids(), _doc_ids()


@pytest.fixture
def client(api_app):
    return api_app.test_client()


@pytest.fixture
def login_as(api_app):
    def _login(email, password):
        client = api_app.test_client()
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200
        return client

    return _login
