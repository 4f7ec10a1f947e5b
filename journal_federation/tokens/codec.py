"""
Sign and verify time-limited claims as JWTs.

Every token carries a ``purpose`` discriminant alongside its claims. All
purposes share the instance secret, so the discriminant is what stops a token
minted for one purpose (e.g. a password reset) from being accepted by the
verifier of another (e.g. export authorization). The purpose is checked before
the claims are handed back to the caller.
"""

from typing import Any, Dict, NamedTuple
from datetime import datetime, timedelta
from calendar import timegm
from enum import Enum
import logging

import jwt
from pytz import UTC

from ..exceptions import InvalidToken, ExpiredToken

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'
RESERVED_CLAIMS = frozenset(['purpose', 'iat', 'exp'])


class Purpose(str, Enum):
    """The things a token can be used for."""

    EMAIL_VERIFICATION = 'email-verification'
    PASSWORD_RESET = 'password-reset'
    SSO_HANDOFF = 'sso-handoff'
    EXPORT = 'export'
    SESSION = 'session'


class DecodedToken(NamedTuple):
    """The verified contents of a token."""

    claims: Dict[str, Any]
    purpose: Purpose
    issued_at: datetime
    expires: datetime


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _epoch(t: datetime) -> int:
    return timegm(t.utctimetuple())


class SignedTokenCodec(object):
    """Issues and verifies tokens signed with a single shared secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError('A signing secret is required')
        self._secret = secret

    def issue(self, claims: Dict[str, Any], purpose: Purpose,
              lifetime: timedelta) -> str:
        """
        Sign ``claims`` for ``purpose``, valid for ``lifetime``.

        Parameters
        ----------
        claims : dict
            JSON-serializable claims. May not use the reserved keys
            ``purpose``, ``iat`` or ``exp``.
        purpose : :class:`.Purpose`
        lifetime : :class:`timedelta`
            Must be positive.

        Returns
        -------
        str

        """
        if lifetime <= timedelta(0):
            raise ValueError('Token lifetime must be positive')
        clashing = RESERVED_CLAIMS.intersection(claims)
        if clashing:
            raise ValueError(f'Reserved claims cannot be set: {clashing}')

        issued_at = _now()
        payload = dict(claims)
        payload.update({
            'purpose': purpose.value,
            'iat': _epoch(issued_at),
            'exp': _epoch(issued_at + lifetime)
        })
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str, purpose: Purpose) -> DecodedToken:
        """
        Verify ``token`` and get its claims and timestamps.

        Raises
        ------
        :class:`.InvalidToken`
            Raised if the token is malformed, was not signed with our secret,
            or was issued for a different purpose.
        :class:`.ExpiredToken`
            Raised if the current time is at or after the embedded expiry.

        """
        try:
            data = dict(jwt.decode(
                token, self._secret, algorithms=[ALGORITHM],
                options={'verify_exp': False, 'verify_iat': False,
                         'require': ['purpose', 'iat', 'exp']}
            ))
        except jwt.exceptions.InvalidTokenError as e:
            raise InvalidToken('Not a valid token') from e

        if data['purpose'] != purpose.value:
            logger.debug('Expected a %s token, got %s', purpose.value,
                         data['purpose'])
            raise InvalidToken('Token was issued for another purpose')

        try:
            issued_at = datetime.fromtimestamp(int(data['iat']), tz=UTC)
            expires = datetime.fromtimestamp(int(data['exp']), tz=UTC)
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidToken('Token timestamps are malformed') from e

        if _now() >= expires:
            raise ExpiredToken('Token has expired')

        claims = {key: value for key, value in data.items()
                  if key not in RESERVED_CLAIMS}
        return DecodedToken(claims=claims, purpose=purpose,
                            issued_at=issued_at, expires=expires)

    def verify(self, token: str, purpose: Purpose) -> Dict[str, Any]:
        """Verify ``token`` for ``purpose`` and return its claims."""
        return self.decode(token, purpose).claims
