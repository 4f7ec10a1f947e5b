"""Purpose-specific tokens issued by a journal instance."""

from typing import Any, Dict, NamedTuple, Type, TypeVar, get_type_hints
from datetime import timedelta
import logging

from .. import domain
from ..exceptions import InvalidToken
from .codec import Purpose, SignedTokenCodec

logger = logging.getLogger(__name__)

T = TypeVar('T')


class EmailVerificationClaims(NamedTuple):
    """Proves control of an e-mail address."""

    user_id: str
    email: str


class PasswordResetClaims(NamedTuple):
    """Authorizes a password change without the current password."""

    user_id: str


class SsoHandoffClaims(NamedTuple):
    """Hands an authenticated user over to another journal."""

    user_id: str
    state: str
    """Opaque value chosen by the journal the user is logging in to."""


class ExportClaims(NamedTuple):
    """Authorizes a peer to fetch one submission."""

    submission_id: str


LIFETIMES: Dict[Purpose, timedelta] = {
    Purpose.EMAIL_VERIFICATION: timedelta(days=7),
    Purpose.PASSWORD_RESET: timedelta(minutes=10),
    Purpose.SSO_HANDOFF: timedelta(minutes=5),
    Purpose.EXPORT: timedelta(minutes=10),
    Purpose.SESSION: timedelta(hours=2),
}


def _shape(cls: Type[T], claims: Dict[str, Any]) -> T:
    """Build a claims record, rejecting missing or mistyped fields."""
    defaults = getattr(cls, '_field_defaults', {})
    for field, field_type in get_type_hints(cls).items():
        if field not in claims:
            if field in defaults:
                continue
            raise InvalidToken(f'Token is missing the {field} claim')
        if field_type in (str, bool) \
                and not isinstance(claims[field], field_type):
            raise InvalidToken(f'Token has a malformed {field} claim')
    try:
        shaped: T = domain.from_dict(cls, claims)
    except (TypeError, ValueError) as e:
        raise InvalidToken('Token claims are malformed') from e
    return shaped


class TokenService(object):
    """
    Issues and verifies the five kinds of tokens used by a journal.

    Each kind has a fixed claim shape, lifetime and purpose. Verifying a token
    with the wrong method fails with :class:`.InvalidToken`, even if the token
    is otherwise valid.
    """

    def __init__(self, secret: str) -> None:
        self._codec = SignedTokenCodec(secret)

    def _issue(self, claims: tuple, purpose: Purpose) -> str:
        return self._codec.issue(domain.to_dict(claims), purpose,
                                 LIFETIMES[purpose])

    def _verify(self, token: str, purpose: Purpose, cls: Type[T]) -> T:
        return _shape(cls, self._codec.verify(token, purpose))

    def issue_email_verification(self, user_id: str, email: str) -> str:
        """Generate an e-mail verification token that expires in a week."""
        return self._issue(EmailVerificationClaims(user_id, email),
                           Purpose.EMAIL_VERIFICATION)

    def verify_email_verification(self, token: str) -> EmailVerificationClaims:
        """Decode an e-mail verification token."""
        return self._verify(token, Purpose.EMAIL_VERIFICATION,
                            EmailVerificationClaims)

    def issue_password_reset(self, user_id: str) -> str:
        """Generate a password reset token that expires in 10 minutes."""
        return self._issue(PasswordResetClaims(user_id),
                           Purpose.PASSWORD_RESET)

    def verify_password_reset(self, token: str) -> PasswordResetClaims:
        """Decode a password reset token."""
        return self._verify(token, Purpose.PASSWORD_RESET, PasswordResetClaims)

    def issue_sso_handoff(self, user_id: str, state: str) -> str:
        """Generate an SSO handoff token that expires in 5 minutes."""
        return self._issue(SsoHandoffClaims(user_id, state),
                           Purpose.SSO_HANDOFF)

    def verify_sso_handoff(self, token: str) -> SsoHandoffClaims:
        """Decode an SSO handoff token."""
        return self._verify(token, Purpose.SSO_HANDOFF, SsoHandoffClaims)

    def issue_export_authorization(self, submission_id: str) -> str:
        """Generate a token letting a peer fetch a submission (10 minutes)."""
        return self._issue(ExportClaims(submission_id), Purpose.EXPORT)

    def verify_export_authorization(self, token: str) -> ExportClaims:
        """Decode an export authorization token."""
        return self._verify(token, Purpose.EXPORT, ExportClaims)

    def issue_session(self, user: domain.SessionUser) -> str:
        """Generate a session token for ``user`` that expires in 2 hours."""
        return self._issue(user, Purpose.SESSION)

    def verify_session(self, token: str) -> domain.SessionUser:
        """Decode a session token."""
        return self._verify(token, Purpose.SESSION, domain.SessionUser)
