"""Flask application integration for the journal database."""

from typing import Generator
from contextlib import contextmanager
import logging

from flask import Flask
from sqlalchemy.orm.session import Session

from .models import db

logger = logging.getLogger(__name__)


@contextmanager
def transaction(commit: bool = True) -> Generator[Session, None, None]:
    """
    Context manager for a database transaction.

    Writes are committed when the block exits, unless ``commit`` is false; a
    caller that composes several writes passes ``commit=False`` to each and
    commits once in its own enclosing transaction. If anything raises, the
    session is rolled back and the exception propagates.
    """
    try:
        yield db.session
        if commit:
            db.session.commit()
    except Exception as e:
        logger.warning('Commit failed, rolling back: %s', str(e))
        db.session.rollback()
        raise


def init_app(app: Flask) -> None:
    """Attach the database session to the application."""
    db.init_app(app)


def current_session() -> Session:
    """Get/create database session for this context."""
    return db.session


def create_all() -> None:
    """Create all tables in the database."""
    db.create_all()


def drop_all() -> None:
    """Drop all tables in the database."""
    db.session.remove()
    db.drop_all()
