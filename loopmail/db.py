# loopmail/db.py
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import (
    Column, DateTime, Integer, MetaData, String, Table, Text,
    create_engine, insert, select,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

# one row per send attempt; never updated or deleted from here
mails = Table(
    "mails",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("recipient", String(320), nullable=False),
    Column("subject", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("error", Text, nullable=True),
)


@dataclass(frozen=True)
class MailRecord:
    recipient: str
    subject: str
    body: str
    error: Optional[str] = None   # None means the send succeeded
    created_at: Optional[dt.datetime] = None
    id: Optional[int] = None


def get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)

def ensure_schema(engine: Engine) -> None:
    metadata.create_all(engine)

def insert_mail(engine: Engine, record: MailRecord) -> None:
    """
    Insert a single audit row for a send attempt.
    Errors propagate; the dispatcher decides what to do with them.
    """
    row = {
        "created_at": record.created_at or dt.datetime.now(dt.timezone.utc),
        "recipient": record.recipient,
        "subject": record.subject,
        "body": record.body,
        "error": record.error,
    }
    with engine.begin() as conn:
        conn.execute(insert(mails), row)

def recent_mails(engine: Engine, limit: int = 50) -> List[MailRecord]:
    sql = select(mails).order_by(mails.c.id.desc()).limit(limit)
    with engine.connect() as conn:
        rows = conn.execute(sql).mappings().all()
    return [
        MailRecord(
            id=r["id"],
            created_at=r["created_at"],
            recipient=r["recipient"],
            subject=r["subject"],
            body=r["body"],
            error=r["error"],
        )
        for r in rows
    ]
