# loopmail/email.py
from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

# ports where the server is expected to upgrade the session before AUTH
STARTTLS_PORTS = frozenset({465, 587})

_LOCALHOST = {"localhost", "127.0.0.1", "::1"}


@dataclass(frozen=True)
class PlainAuth:
    """
    PLAIN credentials (RFC 4616) bound to one server.
    Refuses to hand out the secret over a cleartext session to a remote host.
    """
    identity: str
    username: str
    password: str = field(repr=False)
    host: str

    def login(self, server: smtplib.SMTP, *, tls: bool) -> None:
        if not tls and self.host.casefold() not in _LOCALHOST:
            raise smtplib.SMTPException("unencrypted connection")
        server.auth("PLAIN", self._response, initial_response_ok=True)

    def _response(self, challenge: bytes | None = None) -> str:
        return f"{self.identity}\0{self.username}\0{self.password}"


@dataclass(frozen=True)
class SmtpSession:
    """Connection parameters resolved once at startup; read-only afterwards."""
    host: str
    port: int
    sender: str
    secret: str = field(repr=False)
    addr: str
    auth: Optional[PlainAuth]
    tls_skip_verify: bool = False
    timeout: float = 30.0

    @classmethod
    def create(
        cls,
        host: str,
        port: int,
        sender: str,
        secret: str,
        *,
        tls_skip_verify: bool = False,
        timeout: float = 30.0,
    ) -> "SmtpSession":
        # no secret configured -> unauthenticated relay (MailHog & co.)
        auth = PlainAuth("", sender, secret, host) if secret else None
        return cls(
            host=host,
            port=int(port),
            sender=sender,
            secret=secret,
            addr=f"{host}:{int(port)}",
            auth=auth,
            tls_skip_verify=tls_skip_verify,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings) -> "SmtpSession":
        return cls.create(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_sender,
            settings.smtp_pass,
            tls_skip_verify=settings.smtp_tls_skip_verify,
            timeout=settings.smtp_timeout,
        )

    @property
    def uses_starttls(self) -> bool:
        return self.port in STARTTLS_PORTS

    @property
    def transport(self) -> str:
        return "starttls" if self.uses_starttls else "plain"


def build_message(*, product_name: str, sender: str, to: str, subject: str, body: str) -> EmailMessage:
    """
    Single recipient, empty text/plain part, body as the text/html alternative.
    Body is passed through untouched.
    """
    msg = EmailMessage()
    msg["From"] = formataddr((product_name, sender))
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content("")
    msg.add_alternative(body, subtype="html")
    return msg


def tls_context(skip_verify: bool = False) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if skip_verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def send_with_starttls(session: SmtpSession, msg: EmailMessage) -> None:
    with smtplib.SMTP(host=session.host, port=session.port, timeout=session.timeout) as s:
        s.ehlo()
        s.starttls(context=tls_context(session.tls_skip_verify))
        s.ehlo()
        if session.auth is not None and s.has_extn("auth"):
            session.auth.login(s, tls=True)
        s.send_message(msg)


def send_plain(session: SmtpSession, msg: EmailMessage) -> None:
    """Connect in cleartext; upgrade when the server offers STARTTLS."""
    with smtplib.SMTP(host=session.host, port=session.port, timeout=session.timeout) as s:
        s.ehlo()
        tls = s.has_extn("starttls")
        if tls:
            s.starttls(context=tls_context(session.tls_skip_verify))
            s.ehlo()
        if session.auth is not None:
            if not s.has_extn("auth"):
                raise smtplib.SMTPNotSupportedError("server doesn't support AUTH")
            session.auth.login(s, tls=tls)
        s.send_message(msg)


def send_email(session: SmtpSession, msg: EmailMessage) -> None:
    """Pick the transport from the session's port and send one message."""
    if session.uses_starttls:
        send_with_starttls(session, msg)
    else:
        send_plain(session, msg)
