"""
Cookie sessions of users logged in to this instance.

:func:`load_session` runs before each request and attaches the
:class:`.domain.SessionUser` from the session cookie, if any, as
``request.auth``. Routes that need a user are protected with
:func:`session_required`.
"""

from typing import Any, Callable, Optional
from functools import wraps
import logging

from flask import Response, current_app, request
from werkzeug.exceptions import Unauthorized

from .. import domain
from ..context import current_tokens
from ..exceptions import InvalidToken

logger = logging.getLogger(__name__)


def load_session() -> None:
    """Attach the session user, or ``None``, to the request."""
    cookie_name = current_app.config['AUTH_SESSION_COOKIE_NAME']
    token = request.cookies.get(cookie_name)
    user: Optional[domain.SessionUser] = None
    if token:
        try:
            user = current_tokens().verify_session(token)
        except InvalidToken as e:
            logger.debug('Ignoring session cookie: %s', e)
    request.auth = user


def set_session_cookie(response: Response, token: str) -> Response:
    """Put a session token in the session cookie of ``response``."""
    config = current_app.config
    response.set_cookie(config['AUTH_SESSION_COOKIE_NAME'], token,
                        httponly=True,
                        secure=config['AUTH_SESSION_COOKIE_SECURE'],
                        samesite='Lax')
    return response


def session_required(func: Callable) -> Callable:
    """Require a logged-in user; 401 otherwise."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if getattr(request, 'auth', None) is None:
            logger.debug('No session user')
            raise Unauthorized('You must be logged in')
        return func(*args, **kwargs)
    return wrapper
