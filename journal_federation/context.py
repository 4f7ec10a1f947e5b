"""
Per-application access to the federation components.

Each ``current_*`` function returns a component configured from the Flask
application when there is one, and from :mod:`journal_federation.config`
otherwise. Components that hold no connections are cached on the application
context global. The datastore uses the Flask-SQLAlchemy session of the
current application context.
"""

from typing import Any, Mapping, Optional
import logging

import flask
from flask import Flask, current_app, has_app_context

from . import config
from .archive import ArchiveStore
from .federation.client import FederationClient
from .federation.orchestrator import FederationOrchestrator
from .services import datastore
from .services.datastore import Datastore
from .tokens import TokenService

logger = logging.getLogger(__name__)


def get_application_config(app: Optional[Flask] = None) -> Mapping[str, Any]:
    """Get the configuration of ``app``, or of the current application."""
    if app is not None:
        return app.config
    if has_app_context():
        return current_app.config
    return {key: getattr(config, key) for key in dir(config) if key.isupper()}


def get_application_global() -> Optional[Any]:
    """Get the application context global, if there is one."""
    if has_app_context():
        return flask.g
    return None


def get_tokens(app: Optional[Flask] = None) -> TokenService:
    """Create a :class:`.TokenService` signing with ``JWT_SECRET``."""
    return TokenService(get_application_config(app)['JWT_SECRET'])


def get_archives(app: Optional[Flask] = None) -> ArchiveStore:
    """Create an :class:`.ArchiveStore` on ``SUBMISSION_DIRECTORY``."""
    return ArchiveStore(get_application_config(app)['SUBMISSION_DIRECTORY'])


def get_client(app: Optional[Flask] = None) -> FederationClient:
    """Create a :class:`.FederationClient` identifying this instance."""
    cfg = get_application_config(app)
    return FederationClient(cfg['JOURNAL_URL'],
                            timeout=float(cfg.get('FEDERATION_TIMEOUT', 10)))


def init_app(app: Flask) -> None:
    """Attach the datastore to ``app`` and create its tables."""
    datastore.init_app(app)
    with app.app_context():
        datastore.create_all()


def current_datastore() -> Datastore:
    """Get the datastore; it works within an application context."""
    return Datastore()


def current_tokens() -> TokenService:
    """Get/create the :class:`.TokenService` for this context."""
    g = get_application_global()
    if not g:
        return get_tokens()
    if 'tokens' not in g:
        g.tokens = get_tokens()
    return g.tokens     # type: ignore


def current_archives() -> ArchiveStore:
    """Get/create the :class:`.ArchiveStore` for this context."""
    g = get_application_global()
    if not g:
        return get_archives()
    if 'archives' not in g:
        g.archives = get_archives()
    return g.archives   # type: ignore


def current_client() -> FederationClient:
    """Get/create the :class:`.FederationClient` for this context."""
    g = get_application_global()
    if not g:
        return get_client()
    if 'federation_client' not in g:
        g.federation_client = get_client()
    return g.federation_client  # type: ignore


def current_orchestrator() -> FederationOrchestrator:
    """Get a :class:`.FederationOrchestrator` wired to this context."""
    cfg = get_application_config()
    return FederationOrchestrator(
        tokens=current_tokens(),
        archives=current_archives(),
        client=current_client(),
        datastore=current_datastore(),
        journal_id=cfg['JOURNAL_ID'],
        journal_url=cfg['JOURNAL_URL'],
        peers=cfg.get('FEDERATION_PEERS', {})
    )
