"""Command line entry points for sending a one-off mail and preparing the audit table."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Callable, Optional

from .config import get_settings
from .db import ensure_schema, get_engine, recent_mails
from .dispatcher import MailDispatcher
from .logging_setup import setup_logging
from .request_context import RequestContext


def cmd_init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    ensure_schema(get_engine(settings.database_url))
    print("Audit table ready")
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = get_engine(settings.database_url)
    ensure_schema(engine)
    body = args.body_file.read_text(encoding="utf-8") if args.body_file else args.body
    mailer = MailDispatcher.from_settings(settings, engine)
    ctx = RequestContext()
    if mailer.send(ctx, args.to, args.subject, body):
        print(f"Sent to {mailer.resolve_recipient(args.to)}")
        return 0
    print(f"Failed: {ctx.errors[-1] if ctx.errors else 'unknown error'}")
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    settings = get_settings()
    entries = recent_mails(get_engine(settings.database_url), args.last)
    if not entries:
        print("No mails logged yet")
        return 0
    for entry in entries:
        print(f"[{entry.created_at}] to={entry.recipient} subject={entry.subject!r} error={entry.error or '-'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send transactional mail through the configured SMTP server")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub_init = subparsers.add_parser("init-db", help="Create the mails audit table")
    sub_init.set_defaults(func=cmd_init_db)

    sub_send = subparsers.add_parser("send", help="Send one mail")
    sub_send.add_argument("--to", required=True, help="Recipient (replaced by the sink outside production)")
    sub_send.add_argument("--subject", required=True)
    body = sub_send.add_mutually_exclusive_group(required=True)
    body.add_argument("--body", help="HTML body")
    body.add_argument("--body-file", type=Path, help="Read the HTML body from a file")
    sub_send.set_defaults(func=cmd_send)

    sub_status = subparsers.add_parser("status", help="Show the most recent audit rows")
    sub_status.add_argument("--last", type=int, default=20, help="Number of rows to display")
    sub_status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(app="loopmail-cli", environment=settings.env, level=settings.log_level, stream_json=False)
    func: Callable[[argparse.Namespace], int] = getattr(args, "func")
    return func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
