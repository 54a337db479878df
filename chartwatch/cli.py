"""CLI tool for admin operations.

Usage:
    python -m chartwatch.cli create-user
    python -m chartwatch.cli add-layout <username> <capture_layout_id> [--symbol EURUSD] [--interval 60]
    python -m chartwatch.cli set-session <username>
    python -m chartwatch.cli run-due
    python -m chartwatch.cli migrate-credentials
"""

import argparse
import asyncio
import getpass
import sys

from sqlmodel import Session, select

from chartwatch.database import engine, create_db_and_tables
from chartwatch.models.layout import Layout
from chartwatch.models.user import User
from chartwatch.services.encryption import (
    CredentialDecryptError,
    decrypt,
    encrypt,
    needs_reencryption,
    parse_envelope,
)
from chartwatch.utils.logging import setup_logging


def _get_user(session: Session, username: str) -> User:
    user = session.exec(select(User).where(User.username == username)).first()
    if not user:
        print(f"User '{username}' not found.")
        sys.exit(1)
    return user


def create_user(args):
    """Create a user with an optional Telegram chat id."""
    create_db_and_tables()

    username = input("Username: ").strip()
    if not username:
        print("Username cannot be empty.")
        sys.exit(1)

    with Session(engine) as session:
        existing = session.exec(select(User).where(User.username == username)).first()
        if existing:
            print(f"User '{username}' already exists.")
            sys.exit(1)

        chat_id = input("Telegram chat id (blank to skip): ").strip() or None
        user = User(username=username, telegram_chat_id=chat_id)
        session.add(user)
        session.commit()
        session.refresh(user)

    print(f"User '{username}' created with id {user.id}.")


def add_layout(args):
    create_db_and_tables()
    with Session(engine) as session:
        user = _get_user(session, args.username)
        layout = Layout(
            user_id=user.id,
            capture_layout_id=args.capture_layout_id,
            symbol=args.symbol,
            interval=args.interval,
        )
        session.add(layout)
        session.commit()
        session.refresh(layout)
        print(f"Layout {layout.id} ({layout.display_name}) added for '{user.username}'.")


def set_session(args):
    """Store the user's TradingView session cookies, encrypted."""
    create_db_and_tables()
    session_id = getpass.getpass("sessionid: ").strip()
    session_sign = getpass.getpass("sessionid_sign: ").strip()
    if not session_id or not session_sign:
        print("Both cookies are required.")
        sys.exit(1)

    with Session(engine) as session:
        user = _get_user(session, args.username)
        user.tv_session_id = encrypt(session_id)
        user.tv_session_sign = encrypt(session_sign)
        session.add(user)
        session.commit()
    print(f"Session credentials stored for '{args.username}'.")


def run_due(args):
    """Run one tick against the configured backends and print the outcomes."""
    from chartwatch.engine.runner import AutomationRunner

    create_db_and_tables()
    outcomes = asyncio.run(AutomationRunner().run_tick())
    if not outcomes:
        print("Nothing due.")
        return
    for outcome in outcomes:
        detail = outcome.decision_reason or outcome.message or ""
        print(f"schedule {outcome.schedule_id}: {outcome.status.value} {detail}".rstrip())


def _upgrade(stored: str) -> str | None:
    envelope = parse_envelope(stored)
    if envelope is None:
        return encrypt(stored)
    try:
        return encrypt(decrypt(envelope))
    except CredentialDecryptError as e:
        print(f"  cannot decrypt {envelope.version} value, left unchanged: {e}")
        return None


def migrate_credentials(args):
    """Re-encrypt every stored session credential into the current envelope."""
    create_db_and_tables()
    migrated = skipped = 0
    with Session(engine) as session:
        for user in session.exec(select(User)).all():
            for field in ("tv_session_id", "tv_session_sign"):
                stored = getattr(user, field)
                if not needs_reencryption(stored):
                    continue
                upgraded = _upgrade(stored)
                if upgraded is None:
                    skipped += 1
                    continue
                setattr(user, field, upgraded)
                session.add(user)
                migrated += 1
        session.commit()
    print(f"Re-encrypted {migrated} credential(s), skipped {skipped}.")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="python -m chartwatch.cli")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("create-user").set_defaults(func=create_user)

    p = sub.add_parser("add-layout")
    p.add_argument("username")
    p.add_argument("capture_layout_id")
    p.add_argument("--symbol")
    p.add_argument("--interval")
    p.set_defaults(func=add_layout)

    p = sub.add_parser("set-session")
    p.add_argument("username")
    p.set_defaults(func=set_session)

    sub.add_parser("run-due").set_defaults(func=run_due)
    sub.add_parser("migrate-credentials").set_defaults(func=migrate_credentials)

    args = parser.parse_args(argv)
    setup_logging()
    args.func(args)


if __name__ == "__main__":
    main()
