"""
Translation between the federation wire format and domain objects.

Peers exchange camelCase JSON with timestamps in milliseconds since the
epoch. Parsing is strict: anything that does not have the expected shape
raises :class:`ValueError`, and callers treat it like a missing response.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar
from datetime import datetime
import re

from pytz import UTC

from .. import domain

T = TypeVar('T')
WHITESPACE = re.compile(r'\s')


def to_millis(t: datetime) -> int:
    """Get milliseconds since the epoch."""
    return int(round(t.timestamp() * 1000))


def from_millis(value: Any) -> datetime:
    """Get a UTC datetime from milliseconds since the epoch."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f'Not a timestamp: {value!r}')
    try:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f'Timestamp out of range: {value!r}') from e


def _check(value: Any, kind: Type[T], what: str) -> T:
    if (isinstance(value, bool) and kind is not bool) \
            or not isinstance(value, kind):
        raise ValueError(f'Expected {kind.__name__} for {what}, got {value!r}')
    return value


def _get(data: Dict[str, Any], key: str, kind: Type[T],
         optional: bool = False) -> T:
    value = data.get(key)
    if value is None and optional:
        return value    # type: ignore
    return _check(value, kind, key)


def _is_ok(data: Any) -> bool:
    return isinstance(data, dict) and data.get('status') == 'ok'


def parse_comment(data: Dict[str, Any]) -> domain.ImportedComment:
    """Parse a comment from its wire format."""
    anchor = None
    anchor_data = _get(data, 'anchor', dict, optional=True)
    if anchor_data is not None:
        anchor = domain.Anchor(start=_get(anchor_data, 'start', int),
                               end=_get(anchor_data, 'end', int))
    return domain.ImportedComment(
        comment_id=_get(data, 'id', int),
        contents=_get(data, 'contents', str),
        author=_get(data, 'author', str),
        posted_at=from_millis(data.get('postedAt')),
        replying=_get(data, 'replying', int, optional=True),
        filename=_get(data, 'filename', str, optional=True),
        anchor=anchor
    )


def parse_review(data: Dict[str, Any]) -> domain.ImportedReview:
    """Parse a review from its wire format."""
    return domain.ImportedReview(
        owner=_get(data, 'owner', str),
        created_at=from_millis(data.get('createdAt')),
        comments=[parse_comment(_check(c, dict, 'comment'))
                  for c in _get(data, 'comments', list, optional=True) or []]
    )


def parse_metadata(data: Any) -> domain.ImportedSubmission:
    """
    Parse the metadata endpoint response of a peer.

    Parameters
    ----------
    data : dict
        Decoded JSON body, with ``status``, ``publication`` and ``reviews``.

    Returns
    -------
    :class:`domain.ImportedSubmission`

    Raises
    ------
    ValueError
        Raised if the status is not ``ok`` or the body is malformed.

    """
    if not _is_ok(data):
        raise ValueError('Metadata response is not ok')
    publication = _get(data, 'publication', dict)
    collaborators = _get(publication, 'collaborators', list, optional=True)
    return domain.ImportedSubmission(
        publication=domain.ImportedPublication(
            name=_get(publication, 'name', str),
            title=_get(publication, 'title', str),
            owner=_get(publication, 'owner', str),
            introduction=_get(publication, 'introduction', str),
            revision=_get(publication, 'revision', str),
            collaborators=[_check(c, str, 'collaborator')
                           for c in collaborators or []]
        ),
        reviews=[parse_review(_check(r, dict, 'review'))
                 for r in _get(data, 'reviews', list, optional=True) or []]
    )


def serialize_metadata(metadata: domain.ImportedSubmission) -> Dict[str, Any]:
    """Get the metadata endpoint response for a local submission."""
    publication = metadata.publication
    return {
        'status': 'ok',
        'publication': {
            'name': publication.name,
            'title': publication.title,
            'owner': publication.owner,
            'introduction': publication.introduction,
            'revision': publication.revision,
            'collaborators': list(publication.collaborators)
        },
        'reviews': [
            {
                'owner': review.owner,
                'createdAt': to_millis(review.created_at),
                'comments': [_serialize_comment(c) for c in review.comments]
            }
            for review in metadata.reviews
        ]
    }


def _serialize_comment(comment: domain.ImportedComment) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'id': comment.comment_id,
        'contents': comment.contents,
        'author': comment.author,
        'postedAt': to_millis(comment.posted_at)
    }
    if comment.replying is not None:
        data['replying'] = comment.replying
    if comment.filename is not None:
        data['filename'] = comment.filename
    if comment.anchor is not None:
        data['anchor'] = {'start': comment.anchor.start,
                          'end': comment.anchor.end}
    return data


def thread_comments(comments: List[domain.ImportedComment]) \
        -> List[domain.ImportedComment]:
    """
    Order comments by id, and anchor replies where their parent is.

    A reply whose parent is among ``comments`` takes on the parent's filename
    and anchor, whatever it carried itself.
    """
    threaded: Dict[int, domain.ImportedComment] = {}
    for comment in sorted(comments, key=lambda c: c.comment_id):
        parent = threaded.get(comment.replying) \
            if comment.replying is not None else None
        if parent is not None:
            comment = comment._replace(filename=parent.filename,
                                       anchor=parent.anchor)
        threaded[comment.comment_id] = comment
    return list(threaded.values())


def thread_reviews(metadata: domain.ImportedSubmission) \
        -> domain.ImportedSubmission:
    """Apply :func:`thread_comments` to every review."""
    return metadata._replace(reviews=[
        review._replace(comments=thread_comments(review.comments))
        for review in metadata.reviews
    ])


def parse_user_stub(data: Any,
                    federated_user_id: str) -> domain.FederatedUserStub:
    """
    Parse the user lookup response of a peer.

    Raises
    ------
    ValueError
        Raised if the status is not ``ok``, the body is malformed, or it
        describes some other user.

    """
    if not _is_ok(data):
        raise ValueError('User response is not ok')
    stub = domain.FederatedUserStub(name=_get(data, 'name', str),
                                    email=_get(data, 'email', str),
                                    user_id=_get(data, 'id', str))
    if stub.user_id != federated_user_id:
        raise ValueError(f'Asked for {federated_user_id}, got {stub.user_id}')
    return stub


def parse_sso_user(data: Any) -> Optional[domain.SessionUser]:
    """
    Build the local identity of a user vouched for by a peer.

    Returns ``None`` unless the response is ``ok`` and names the user.
    Missing details are filled in with placeholders.
    """
    if not _is_ok(data):
        return None
    user_id = data.get('id')
    if not user_id or not isinstance(user_id, str):
        return None
    name = data.get('name') if isinstance(data.get('name'), str) else ''
    first_name, last_name = domain.split_name(name)
    return domain.SessionUser(
        user_id=user_id,
        username=data.get('username') or WHITESPACE.sub('', name),
        email=data.get('email') or f'Not provided, id: {user_id}',
        first_name=first_name,
        last_name=last_name,
        role=domain.UserRole.USER,
        has_verified_email=False,
        home_journal=domain.instance_code(user_id),
        profile_picture_url=data.get('profilePictureUrl')
        or domain.DEFAULT_PROFILE_PICTURE_URL
    )


def user_response(user: domain.SessionUser) -> Dict[str, Any]:
    """Describe a local user to a peer."""
    return {
        'status': 'ok',
        'id': user.user_id,
        'name': user.full_name,
        'email': user.email,
        'username': user.username,
        'profilePictureUrl': user.profile_picture_url
    }
