"""
Export-token authorization of inbound federation requests.

A peer that has been told about a submission (see
:meth:`.FederationOrchestrator.export_submission`) fetches it with the export
token it was given, passed as ``Authorization: Bearer <token>``.
:class:`BearerAuthenticator` checks such headers, and
:func:`export_token_required` protects Flask routes with it:

.. code-block:: python

   @blueprint.route('/submissions/<string:submission_id>')
   @export_token_required
   def get_submission(submission_id: str):
       ...

When the decorated route is called...

- If the header is missing, or the token does not verify as an export
  token, :class:`Unauthorized` is raised.
- If the token was minted for another submission, :class:`Forbidden` is
  raised.
- Otherwise the route is called with the original parameters.

"""

from typing import Any, Callable, Optional
from functools import wraps
import logging

from flask import request
from werkzeug.exceptions import Unauthorized, Forbidden

from ..context import current_tokens
from ..exceptions import InvalidToken
from ..tokens import TokenService, ExportClaims

logger = logging.getLogger(__name__)

SCHEME = 'bearer'


def _extract(header_value: Optional[str]) -> Optional[str]:
    """Get the token from a ``Bearer <token>`` header value."""
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != SCHEME:
        return None
    return parts[1]


class BearerAuthenticator(object):
    """Checks ``Authorization`` headers against our export tokens."""

    def __init__(self, tokens: TokenService) -> None:
        self._tokens = tokens

    def claims(self, header_value: Optional[str]) -> Optional[ExportClaims]:
        """Get the export claims in a header value, if they are valid."""
        token = _extract(header_value)
        if token is None:
            logger.debug('No bearer token in header')
            return None
        try:
            return self._tokens.verify_export_authorization(token)
        except InvalidToken as e:
            logger.debug('Bearer token rejected: %s', e)
            return None

    def authorize(self, header_value: Optional[str]) -> bool:
        """Determine whether a header value carries a valid export token."""
        return self.claims(header_value) is not None


def export_token_required(func: Callable) -> Callable:
    """Require an export token for the requested ``submission_id``."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        """
        Check the export token before executing the route.

        Raises
        ------
        :class:`.Unauthorized`
            Raised when the token is missing or invalid.
        :class:`.Forbidden`
            Raised when the token was issued for a different submission.

        """
        authenticator = BearerAuthenticator(current_tokens())
        claims = authenticator.claims(request.headers.get('Authorization'))
        if claims is None:
            raise Unauthorized('Invalid authorization token')
        if claims.submission_id != kwargs.get('submission_id'):
            logger.debug('Token is for %s, not %s', claims.submission_id,
                         kwargs.get('submission_id'))
            raise Forbidden('Token not authorized for this submission')
        logger.debug('Request is authorized, proceeding')
        return func(*args, **kwargs)
    return wrapper
