import smtplib

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from loopmail.config import Settings
from loopmail.db import ensure_schema


class FakeSMTP:
    """Stands in for smtplib.SMTP; every connection is recorded on the class."""
    connections: list = []
    extensions = {"auth": "PLAIN LOGIN", "starttls": ""}
    fail_auth = False
    fail_connect = False

    def __init__(self, host="", port=0, timeout=None, **kwargs):
        if self.fail_connect:
            raise ConnectionRefusedError(111, "Connection refused")
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        self.sent = []
        self.tls_context = None
        FakeSMTP.connections.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")
        return False

    def ehlo(self, name=""):
        self.calls.append("ehlo")

    def has_extn(self, opt):
        return opt.lower() in self.extensions

    def starttls(self, context=None):
        self.calls.append("starttls")
        self.tls_context = context

    def auth(self, mechanism, authobject, *, initial_response_ok=True):
        self.calls.append(("auth", mechanism, authobject()))
        if self.fail_auth:
            raise smtplib.SMTPAuthenticationError(535, b"5.7.8 Username and Password not accepted")

    def send_message(self, msg, from_addr=None, to_addrs=None):
        self.calls.append("send")
        self.sent.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    monkeypatch.setattr(FakeSMTP, "connections", [])
    monkeypatch.setattr(FakeSMTP, "extensions", dict(FakeSMTP.extensions))
    monkeypatch.setattr(FakeSMTP, "fail_auth", False)
    monkeypatch.setattr(FakeSMTP, "fail_connect", False)
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        future=True,
    )
    ensure_schema(eng)
    yield eng
    eng.dispose()


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        env="production",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_sender="noreply@x.org",
        smtp_pass="secret",
        product_name="The Clothing Loop",
        sink_address="hello@clothingloop.org",
        contact_emails_csv="team@clothingloop.org",
        api_key=None,
        log_file=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    return make_settings
