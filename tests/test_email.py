# tests/test_email.py
import base64
import smtplib
import ssl

import pytest

from loopmail.email import PlainAuth, SmtpSession, build_message, send_email, tls_context


def test_session_derives_addr_and_plain_auth():
    s = SmtpSession.create("smtp.example.com", 587, "noreply@x.org", "secret")
    assert s.addr == "smtp.example.com:587"
    assert s.auth == PlainAuth(identity="", username="noreply@x.org", password="secret", host="smtp.example.com")
    assert "secret" not in repr(s)

def test_session_without_secret_has_no_auth():
    s = SmtpSession.create("localhost", 1025, "noreply@x.org", "")
    assert s.auth is None

@pytest.mark.parametrize("port,expected", [(465, "starttls"), (587, "starttls"), (25, "plain"), (1025, "plain"), (2525, "plain")])
def test_transport_follows_port(port, expected):
    assert SmtpSession.create("h", port, "a@b.c", "x").transport == expected

def test_build_message_shape():
    msg = build_message(product_name="The Clothing Loop", sender="noreply@x.org",
                        to="user@test.com", subject="Reset", body="<p>hi</p>")
    assert msg["From"] == "The Clothing Loop <noreply@x.org>"
    assert msg["To"] == "user@test.com"
    assert msg["Subject"] == "Reset"
    assert msg["Cc"] is None and msg["Bcc"] is None
    assert msg.get_content_type() == "multipart/alternative"
    plain = msg.get_body(preferencelist=("plain",))
    html = msg.get_body(preferencelist=("html",))
    assert plain.get_content().strip() == ""
    assert html.get_content().strip() == "<p>hi</p>"

def test_tls_context_verifies_by_default():
    ctx = tls_context()
    assert ctx.verify_mode == ssl.CERT_REQUIRED
    assert ctx.check_hostname is True

def test_tls_context_skip_verify_is_opt_in():
    ctx = tls_context(skip_verify=True)
    assert ctx.verify_mode == ssl.CERT_NONE
    assert ctx.check_hostname is False

def _msg():
    return build_message(product_name="P", sender="noreply@x.org", to="u@t.com", subject="s", body="b")

def test_starttls_path_upgrades_before_auth(fake_smtp):
    send_email(SmtpSession.create("smtp.example.com", 587, "noreply@x.org", "secret"), _msg())
    conn = fake_smtp.connections[0]
    assert (conn.host, conn.port) == ("smtp.example.com", 587)
    assert conn.calls == ["ehlo", "starttls", "ehlo", ("auth", "PLAIN", "\0noreply@x.org\0secret"), "send", "quit"]
    assert conn.tls_context.verify_mode == ssl.CERT_REQUIRED

def test_starttls_path_honours_skip_verify(fake_smtp):
    session = SmtpSession.create("smtp.example.com", 465, "noreply@x.org", "secret", tls_skip_verify=True)
    send_email(session, _msg())
    assert fake_smtp.connections[0].tls_context.verify_mode == ssl.CERT_NONE

def test_starttls_path_skips_auth_when_not_advertised(fake_smtp):
    del fake_smtp.extensions["auth"]
    send_email(SmtpSession.create("smtp.example.com", 587, "noreply@x.org", "secret"), _msg())
    assert fake_smtp.connections[0].calls == ["ehlo", "starttls", "ehlo", "send", "quit"]

def test_plain_path_to_localhost(fake_smtp):
    del fake_smtp.extensions["starttls"]
    send_email(SmtpSession.create("localhost", 1025, "noreply@x.org", "secret"), _msg())
    calls = fake_smtp.connections[0].calls
    assert "starttls" not in calls
    assert ("auth", "PLAIN", "\0noreply@x.org\0secret") in calls
    assert calls[-2:] == ["send", "quit"]

def test_plain_path_upgrades_when_offered(fake_smtp):
    send_email(SmtpSession.create("smtp.example.com", 2525, "noreply@x.org", "secret"), _msg())
    conn = fake_smtp.connections[0]
    assert conn.calls == ["ehlo", "starttls", "ehlo", ("auth", "PLAIN", "\0noreply@x.org\0secret"), "send", "quit"]
    assert conn.tls_context.verify_mode == ssl.CERT_REQUIRED

def test_plain_path_refuses_credentials_to_remote_host(fake_smtp):
    del fake_smtp.extensions["starttls"]
    with pytest.raises(smtplib.SMTPException, match="unencrypted connection"):
        send_email(SmtpSession.create("smtp.example.com", 25, "noreply@x.org", "secret"), _msg())
    assert "send" not in fake_smtp.connections[0].calls

def test_plain_path_requires_auth_extension(fake_smtp):
    del fake_smtp.extensions["auth"]
    with pytest.raises(smtplib.SMTPNotSupportedError):
        send_email(SmtpSession.create("localhost", 25, "noreply@x.org", "secret"), _msg())

def test_plain_path_without_credentials(fake_smtp):
    del fake_smtp.extensions["starttls"]
    send_email(SmtpSession.create("mailhog", 1025, "noreply@x.org", ""), _msg())
    assert fake_smtp.connections[0].calls == ["ehlo", "send", "quit"]


class ScriptedSMTP(smtplib.SMTP):
    """Real smtplib client whose server replies come from a script instead of a socket."""
    def __init__(self, replies):
        super().__init__()
        self.replies = list(replies)
        self.commands = []

    def docmd(self, cmd, args=""):
        self.commands.append((cmd, args))
        return self.replies.pop(0)


def _decoded(payload: str) -> str:
    return base64.b64decode(payload).decode("ascii")

def test_plain_auth_initial_response_exchange():
    server = ScriptedSMTP([(235, b"2.7.0 Authentication successful")])
    PlainAuth("", "noreply@x.org", "secret", "localhost").login(server, tls=True)
    [(cmd, args)] = server.commands
    mechanism, payload = args.split(" ")
    assert (cmd, mechanism) == ("AUTH", "PLAIN")
    assert _decoded(payload) == "\0noreply@x.org\0secret"

def test_plain_auth_answers_empty_challenge():
    # servers may ignore the initial response and ask again with an empty 334
    server = ScriptedSMTP([(334, b""), (235, b"2.7.0 Authentication successful")])
    PlainAuth("", "noreply@x.org", "secret", "localhost").login(server, tls=True)
    assert len(server.commands) == 2
    assert _decoded(server.commands[1][0]) == "\0noreply@x.org\0secret"

def test_plain_auth_rejected():
    server = ScriptedSMTP([(535, b"5.7.8 Username and Password not accepted")])
    with pytest.raises(smtplib.SMTPAuthenticationError):
        PlainAuth("", "noreply@x.org", "wrong", "localhost").login(server, tls=True)
