"""SQLAlchemy models for the journal database."""

from datetime import datetime

from pytz import UTC

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, \
    String, Text
from sqlalchemy.orm import relationship

db: SQLAlchemy = SQLAlchemy()


def _utcnow() -> datetime:
    return datetime.now(tz=UTC).replace(tzinfo=None)


submission_co_authors = db.Table(
    'submission_co_author',
    Column('submission_id', ForeignKey('submission.id'), primary_key=True),
    Column('user_id', ForeignKey('user.id'), primary_key=True)
)


class DBUser(db.Model):
    """Persistence for :class:`domain.SessionUser`."""

    __tablename__ = 'user'

    id = Column(Integer, primary_key=True, autoincrement=True)
    federated_id = Column(String(64), unique=True, nullable=False)
    """Identifier shared with other instances; ends in the instance code."""

    username = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    role = Column(Integer, nullable=False, default=0)
    has_verified_email = Column(Boolean, nullable=False, default=False)
    home_journal = Column(String(3), nullable=False)
    profile_picture_url = Column(String(1024), nullable=False)
    created = Column(DateTime, default=_utcnow)


class DBSubmission(db.Model):
    """Persistence for :class:`domain.Submission`."""

    __tablename__ = 'submission'

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(String(64), unique=True, nullable=False)
    archive_id = Column(String(32), nullable=False)
    """Name of the archive holding the files, without ``.zip``."""

    title = Column(String(1024), nullable=False)
    description = Column(Text, nullable=False, default='')
    file_name = Column(String(1024), nullable=False, default='')
    revision = Column(String(255), nullable=False, default='')
    published = Column(Boolean, nullable=False, default=False)
    created = Column(DateTime, default=_utcnow)

    author_id = Column(ForeignKey('user.id'), nullable=False)
    author = relationship('DBUser', lazy='joined')
    co_authors = relationship('DBUser', secondary=submission_co_authors,
                              lazy='selectin', order_by='DBUser.id')
    reviews = relationship('DBReview', back_populates='submission',
                           order_by='DBReview.id')


class DBReview(db.Model):
    """A review of a submission."""

    __tablename__ = 'review'

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(ForeignKey('submission.id'), nullable=False)
    owner_id = Column(ForeignKey('user.id'), nullable=False)
    created_at = Column(DateTime, nullable=False)
    """Naive UTC."""

    submission = relationship('DBSubmission', back_populates='reviews')
    owner = relationship('DBUser', lazy='joined')
    comments = relationship('DBComment', back_populates='review',
                            order_by='DBComment.id')


class DBComment(db.Model):
    """A comment within a review, optionally anchored to lines of a file."""

    __tablename__ = 'comment'

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(ForeignKey('review.id'), nullable=False)
    author_id = Column(ForeignKey('user.id'), nullable=False)
    replying_id = Column(ForeignKey('comment.id'), nullable=True)
    contents = Column(Text, nullable=False)
    posted_at = Column(DateTime, nullable=False)
    """Naive UTC."""

    filename = Column(String(1024), nullable=True)
    anchor_start = Column(Integer, nullable=True)
    anchor_end = Column(Integer, nullable=True)

    review = relationship('DBReview', back_populates='comments')
    author = relationship('DBUser', lazy='joined')
