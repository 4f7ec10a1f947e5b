"""
Persistence of users, submissions and review history.

:class:`Datastore` is the only thing in the federation core that touches the
database, through the Flask-SQLAlchemy session of the current application
context. Each write commits by default; pass ``commit=False`` to compose
several writes within an enclosing :meth:`Datastore.transaction`, which
commits (or rolls back) them together:

.. code-block:: python

   with datastore.transaction():
       datastore.create_shadow_user(stub, commit=False)
       datastore.create_submission_from_metadata(metadata, archive_id,
                                                 commit=False)

"""

from typing import Dict, Generator, Iterable, List, Optional
from contextlib import contextmanager
from datetime import datetime
import logging
import uuid

import nh3
from pytz import UTC
from sqlalchemy import func, select
from sqlalchemy.orm.session import Session

from ... import domain
from ...exceptions import SubmissionNotFound, UserNotFound
from . import util
from .models import DBUser, DBSubmission, DBReview, DBComment

logger = logging.getLogger(__name__)

init_app = util.init_app
create_all = util.create_all
drop_all = util.drop_all


def _naive_utc(t: datetime) -> datetime:
    """Get a naive UTC datetime for storage."""
    if t.tzinfo is None:
        return t
    return t.astimezone(UTC).replace(tzinfo=None)


def _aware(t: datetime) -> datetime:
    return t.replace(tzinfo=UTC)


def sanitize(text: str) -> str:
    """Strip markup that is unsafe to render from text written by peers."""
    return nh3.clean(text)


def _to_user(db_user: DBUser) -> domain.SessionUser:
    return domain.SessionUser(
        user_id=db_user.federated_id,
        username=db_user.username,
        email=db_user.email,
        first_name=db_user.first_name,
        last_name=db_user.last_name,
        role=domain.UserRole(db_user.role),
        has_verified_email=db_user.has_verified_email,
        home_journal=db_user.home_journal,
        profile_picture_url=db_user.profile_picture_url
    )


def _to_submission(db_submission: DBSubmission) -> domain.Submission:
    return domain.Submission(
        submission_id=db_submission.submission_id,
        archive_id=db_submission.archive_id,
        title=db_submission.title,
        description=db_submission.description,
        author=_to_user(db_submission.author),
        co_authors=[_to_user(u) for u in db_submission.co_authors],
        file_name=db_submission.file_name,
        revision=db_submission.revision,
        published=db_submission.published
    )


def _to_comment(db_comment: DBComment) -> domain.ImportedComment:
    anchor = None
    if db_comment.anchor_start is not None \
            and db_comment.anchor_end is not None:
        anchor = domain.Anchor(db_comment.anchor_start, db_comment.anchor_end)
    return domain.ImportedComment(
        comment_id=db_comment.id,
        contents=db_comment.contents,
        author=db_comment.author.federated_id,
        posted_at=_aware(db_comment.posted_at),
        replying=db_comment.replying_id,
        filename=db_comment.filename,
        anchor=anchor
    )


class Datastore(object):
    """SQLAlchemy-backed storage for a journal instance."""

    def create_all(self) -> None:
        """Create all tables in the database."""
        create_all()

    def drop_all(self) -> None:
        """Drop all tables in the database."""
        drop_all()

    @contextmanager
    def transaction(self, commit: bool = True) \
            -> Generator[Session, None, None]:
        """
        Context manager for a database transaction.

        See :func:`.util.transaction`. Writes made inside the block with
        ``commit=False`` are committed, or rolled back, with it.
        """
        with util.transaction(commit) as dbsession:
            yield dbsession

    def _load_user(self, dbsession: Session, federated_id: str) -> DBUser:
        db_user: Optional[DBUser] = dbsession.execute(
            select(DBUser).where(DBUser.federated_id == federated_id)
        ).scalar_one_or_none()
        if db_user is None:
            raise UserNotFound(f'No such user: {federated_id}')
        return db_user

    def _load_submission(self, dbsession: Session,
                         submission_id: str) -> DBSubmission:
        db_submission: Optional[DBSubmission] = dbsession.execute(
            select(DBSubmission)
            .where(DBSubmission.submission_id == submission_id)
        ).scalar_one_or_none()
        if db_submission is None:
            raise SubmissionNotFound(f'No such submission: {submission_id}')
        return db_submission

    def find_user_by_federated_id(self, federated_id: str) \
            -> Optional[domain.SessionUser]:
        """Get a local user by federated id, or ``None`` if there is none."""
        try:
            return _to_user(self._load_user(util.current_session(),
                                            federated_id))
        except UserNotFound:
            return None

    def create_user(self, user: domain.SessionUser,
                    commit: bool = True) -> domain.SessionUser:
        """
        Persist a new user.

        Parameters
        ----------
        user : :class:`domain.SessionUser`
            The ``user_id`` must be a federated id not yet in use.
        commit : bool
            Whether to commit now, or leave it to an enclosing transaction.

        Returns
        -------
        :class:`domain.SessionUser`

        """
        with util.transaction(commit) as dbsession:
            db_user = DBUser(
                federated_id=user.user_id,
                username=user.username,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=int(user.role),
                has_verified_email=user.has_verified_email,
                home_journal=user.home_journal
                or domain.instance_code(user.user_id),
                profile_picture_url=user.profile_picture_url
            )
            dbsession.add(db_user)
            dbsession.flush()
            logger.debug('Created user %s', user.user_id)
            return _to_user(db_user)

    def create_shadow_user(self, stub: domain.FederatedUserStub,
                           commit: bool = True) -> domain.SessionUser:
        """Persist the local stand-in for a user owned by another instance."""
        return self.create_user(domain.shadow_user(stub), commit=commit)

    def create_submission(self, author_id: str, archive_id: str, title: str,
                          description: str = '', file_name: str = '',
                          revision: str = '',
                          co_author_ids: Iterable[str] = (),
                          published: bool = False,
                          commit: bool = True) -> domain.Submission:
        """Persist a new submission whose files are in ``archive_id``."""
        with util.transaction(commit) as dbsession:
            db_submission = DBSubmission(
                submission_id=uuid.uuid4().hex,
                archive_id=archive_id,
                title=title,
                description=description,
                file_name=file_name,
                revision=revision,
                published=published,
                author=self._load_user(dbsession, author_id),
                co_authors=[self._load_user(dbsession, user_id)
                            for user_id in dict.fromkeys(co_author_ids)]
            )
            dbsession.add(db_submission)
            dbsession.flush()
            return _to_submission(db_submission)

    def create_submission_from_metadata(self,
                                        metadata: domain.ImportedSubmission,
                                        archive_id: str,
                                        commit: bool = True) \
            -> domain.Submission:
        """
        Persist an imported submission along with its reviews and comments.

        Every federated id referenced by ``metadata`` must already belong to a
        local (or shadow) user. Comments are stored in order of their remote
        ids; replies are linked to the local copy of their parent. The
        introduction and the comment contents come from a peer, and are
        sanitized before they are stored.

        Raises
        ------
        :class:`.UserNotFound`
            Raised if a referenced user is not known locally.

        """
        publication = metadata.publication
        with util.transaction(commit) as dbsession:
            submission = self.create_submission(
                author_id=publication.owner,
                archive_id=archive_id,
                title=publication.title,
                description=sanitize(publication.introduction),
                file_name=publication.name,
                revision=publication.revision,
                co_author_ids=publication.collaborators,
                commit=False
            )
            db_submission = self._load_submission(dbsession,
                                                  submission.submission_id)
            for review in metadata.reviews:
                db_review = DBReview(
                    submission=db_submission,
                    owner=self._load_user(dbsession, review.owner),
                    created_at=_naive_utc(review.created_at)
                )
                dbsession.add(db_review)
                local_ids: Dict[int, DBComment] = {}
                for comment in sorted(review.comments,
                                      key=lambda c: c.comment_id):
                    parent = None
                    if comment.replying is not None:
                        parent = local_ids.get(comment.replying)
                        if parent is None:
                            logger.debug('Comment %i replies to unknown %i',
                                         comment.comment_id, comment.replying)
                    db_comment = DBComment(
                        review=db_review,
                        author=self._load_user(dbsession, comment.author),
                        replying_id=parent.id if parent is not None else None,
                        contents=sanitize(comment.contents),
                        posted_at=_naive_utc(comment.posted_at),
                        filename=comment.filename,
                        anchor_start=comment.anchor.start
                        if comment.anchor else None,
                        anchor_end=comment.anchor.end
                        if comment.anchor else None
                    )
                    dbsession.add(db_comment)
                    dbsession.flush()
                    local_ids[comment.comment_id] = db_comment
            logger.debug('Imported submission %s into archive %s',
                         submission.submission_id, archive_id)
            return submission

    def get_submission(self, submission_id: str) -> domain.Submission:
        """Get a submission, or raise :class:`.SubmissionNotFound`."""
        return _to_submission(self._load_submission(util.current_session(),
                                                    submission_id))

    def get_submission_archive_id(self, submission_id: str) -> str:
        """Get the identifier of the archive holding a submission's files."""
        return self.get_submission(submission_id).archive_id

    def get_submission_metadata(self, submission_id: str) \
            -> domain.ImportedSubmission:
        """Describe a local submission in the exchange format."""
        db_submission = self._load_submission(util.current_session(),
                                              submission_id)
        publication = domain.ImportedPublication(
            name=db_submission.file_name,
            title=db_submission.title,
            owner=db_submission.author.federated_id,
            introduction=db_submission.description,
            revision=db_submission.revision,
            collaborators=[u.federated_id for u in db_submission.co_authors]
        )
        reviews: List[domain.ImportedReview] = [
            domain.ImportedReview(
                owner=db_review.owner.federated_id,
                created_at=_aware(db_review.created_at),
                comments=[_to_comment(c) for c in db_review.comments]
            )
            for db_review in db_submission.reviews
        ]
        return domain.ImportedSubmission(publication=publication,
                                         reviews=reviews)

    def count_submissions(self) -> int:
        """Get the number of submissions."""
        count: int = util.current_session().execute(
            select(func.count(DBSubmission.id))
        ).scalar_one()
        return count
