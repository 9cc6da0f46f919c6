from __future__ import annotations

import logging
import smtplib
import time
from typing import Callable, Optional

from email.message import EmailMessage
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .db import MailRecord, insert_mail
from .email import SmtpSession, build_message, send_email
from .metrics import AUDIT_FAILURES_TOTAL, MAILS_TOTAL, SMTP_LATENCY_SECONDS
from .request_context import ErrorSink, NullContext

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Unable to send email"


class MailDispatcher:
    """
    Sends one transactional mail per call and writes one audit row per attempt.

    Outside production every mail goes to `sink_address` instead of the
    requested recipient. Failures are reported to the request context as a
    generic 500 and never raised to the caller; the SMTP error text only ends
    up in the audit table and the server log.
    """

    def __init__(
        self,
        session: SmtpSession,
        engine: Engine,
        *,
        production: bool,
        product_name: str,
        sink_address: str,
        send: Callable[[SmtpSession, EmailMessage], None] = send_email,
    ) -> None:
        self.session = session
        self.engine = engine
        self.production = production
        self.product_name = product_name
        self.sink_address = sink_address
        self._send = send

    @classmethod
    def from_settings(cls, settings, engine: Engine) -> "MailDispatcher":
        return cls(
            SmtpSession.from_settings(settings),
            engine,
            production=settings.is_production,
            product_name=settings.product_name,
            sink_address=settings.sink_address,
        )

    def resolve_recipient(self, to: str) -> str:
        return to if self.production else self.sink_address

    def send(self, ctx: Optional[ErrorSink], to: str, subject: str, body: str) -> bool:
        ctx = ctx or NullContext()
        to = self.resolve_recipient(to)

        err: Optional[Exception] = None
        start = time.time()
        try:
            msg = build_message(
                product_name=self.product_name,
                sender=self.session.sender,
                to=to,
                subject=subject,
                body=body,
            )
            self._send(self.session, msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            # OSError covers socket/DNS/ssl failures; ValueError bad header values
            err = e
        finally:
            SMTP_LATENCY_SECONDS.labels(transport=self.session.transport).observe(time.time() - start)

        self._audit(MailRecord(recipient=to, subject=subject, body=body, error=None if err is None else str(err)))

        if err is not None:
            MAILS_TOTAL.labels(outcome="failed").inc()
            logger.error(
                "[mail] send to %s via %s failed: %s", to, self.session.addr, err,
                extra={"recipient": to, "subject": subject, "outcome": "failed"},
            )
            ctx.error(err)
            ctx.abort_with_error(500, SEND_FAILED_MESSAGE)
            return False

        MAILS_TOTAL.labels(outcome="sent").inc()
        logger.info(
            "[mail] sent to %s via %s", to, self.session.addr,
            extra={"recipient": to, "subject": subject, "outcome": "sent"},
        )
        return True

    def _audit(self, record: MailRecord) -> None:
        # best effort: a lost audit row must not change the send outcome
        try:
            insert_mail(self.engine, record)
        except SQLAlchemyError:
            AUDIT_FAILURES_TOTAL.inc()
            logger.exception("[mail] audit insert failed for %s", record.recipient)
