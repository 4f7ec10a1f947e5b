"""Defines the core concepts exchanged between federated journal instances."""

from typing import Any, List, NamedTuple, Optional, Tuple, get_type_hints
from datetime import datetime
from enum import IntEnum
import logging

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_PICTURE_URL = \
    'https://avatars.githubusercontent.com/u/23016414?s=200&v=4'
"""Avatar shown for users who have not provided one."""

INSTANCE_CODE_LENGTH = 3
"""Federated ids end with a fixed-width code naming the issuing instance."""


class UserRole(IntEnum):
    """Roles a user can hold on a journal instance."""

    USER = 0
    ADMIN = 1
    EDITOR = 2


class SessionUser(NamedTuple):
    """The public-facing fields of a local user, as carried in a session."""

    user_id: str
    """Federated identifier of the user."""

    username: str
    """Slug-like username."""

    email: str
    """The user's e-mail address (or a placeholder if none is known)."""

    first_name: str
    """First name or given name."""

    last_name: str
    """Last name or family name."""

    role: UserRole = UserRole.USER
    """Role of the user on this instance."""

    has_verified_email: bool = False
    """Whether or not the user's e-mail address has been verified."""

    home_journal: str = ''
    """Instance code of the journal that owns the user."""

    profile_picture_url: str = DEFAULT_PROFILE_PICTURE_URL
    """URL of the user's avatar."""

    @property
    def full_name(self) -> str:
        """First and last name, space separated."""
        return f'{self.first_name} {self.last_name}'

    @classmethod
    def before_init(cls, data: dict) -> None:
        """Make sure that the role is a :class:`.UserRole`."""
        if 'role' in data:
            data['role'] = UserRole(int(data['role']))


class FederatedUserStub(NamedTuple):
    """Minimal description of a user owned by a remote instance."""

    name: str
    email: str
    user_id: str


class DirectoryEntry(NamedTuple):
    """A single entry in a directory listing of an archive."""

    name: str
    """Path of the entry inside the archive, without a trailing slash."""

    is_directory: bool

    last_modified: Optional[datetime] = None
    """Modification time recorded in the archive (UTC)."""


class Anchor(NamedTuple):
    """A range of lines within a source file that a comment refers to."""

    start: int
    end: int


class ImportedComment(NamedTuple):
    """A review comment in the exchange format."""

    comment_id: int
    contents: str
    author: str
    """Federated id of the commenter."""

    posted_at: datetime
    replying: Optional[int] = None
    """Id of the comment this one replies to, if any."""

    filename: Optional[str] = None
    anchor: Optional[Anchor] = None


class ImportedReview(NamedTuple):
    """A review, with its comments, in the exchange format."""

    owner: str
    created_at: datetime
    comments: List[ImportedComment] = []


class ImportedPublication(NamedTuple):
    """The descriptive part of a submission in the exchange format."""

    name: str
    """File name of the latest version."""

    title: str
    owner: str
    """Federated id of the author."""

    introduction: str
    revision: str
    collaborators: List[str] = []
    """Federated ids of the co-authors."""


class ImportedSubmission(NamedTuple):
    """Everything needed to materialize a submission from another journal."""

    publication: ImportedPublication
    reviews: List[ImportedReview] = []

    @property
    def federated_users(self) -> List[str]:
        """All federated user ids referenced, in order of first appearance."""
        ids = [self.publication.owner, *self.publication.collaborators]
        for review in self.reviews:
            ids.append(review.owner)
            ids.extend(comment.author for comment in review.comments)
        return list(dict.fromkeys(ids))


class Submission(NamedTuple):
    """A submission as stored on this instance."""

    submission_id: str
    """Public identifier of the submission."""

    archive_id: str
    """Identifier of the archive holding the submission files."""

    title: str
    description: str
    author: SessionUser
    co_authors: List[SessionUser] = []
    file_name: str = ''
    revision: str = ''
    published: bool = False


def instance_code(federated_id: str) -> str:
    """Get the code of the instance that issued ``federated_id``."""
    return federated_id[-INSTANCE_CODE_LENGTH:]


def split_name(name: str) -> Tuple[str, str]:
    """
    Split a display name into first and last names.

    Names without a space get a placeholder last name.
    """
    name = name.strip()
    if ' ' in name:
        first_name, last_name = name.split(' ', 1)
        return first_name, last_name.strip()
    return name, 'Not provided'


def shadow_user(stub: FederatedUserStub) -> SessionUser:
    """Describe the local stand-in for a user owned by a remote instance."""
    first_name, last_name = split_name(stub.name)
    return SessionUser(
        user_id=stub.user_id,
        username='-'.join(stub.name.split()),
        email=stub.email,
        first_name=first_name,
        last_name=last_name,
        role=UserRole.USER,
        has_verified_email=True,
        home_journal=instance_code(stub.user_id)
    )


# Helpers and private functions.


def to_dict(obj: tuple) -> dict:
    """
    Generate a dict representation of a flat NamedTuple instance.

    Enum members are cast to their values, so that the result can be encoded
    as JSON (e.g. as token claims).
    """
    return {key: int(value) if isinstance(value, IntEnum) else value
            for key, value in obj._asdict().items()}  # type: ignore


def from_dict(cls: type, data: dict) -> Any:
    """
    Generate a NamedTuple instance from a dict.

    Keys that are not fields of ``cls`` are ignored. If ``cls`` has a
    ``before_init`` classmethod, it is called with the field values first.

    Parameters
    ----------
    cls: type
        Any NamedTuple class.

    data: dict
        Data with which to instantiate ``cls``.

    Returns
    -------
    NamedTuple
        An instance of ``cls``.
    """
    _data = {field: data[field] for field in get_type_hints(cls)
             if field in data}
    if hasattr(cls, 'before_init'):
        cls.before_init(_data)
    return cls(**_data)
