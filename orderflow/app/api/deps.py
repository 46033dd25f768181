from __future__ import annotations

from typing import Generator

from orderflow.app.db.session import SessionLocal
from orderflow.services.notifications import EmailSender, SmtpEmailSender


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_email_sender() -> EmailSender:
    return SmtpEmailSender()
