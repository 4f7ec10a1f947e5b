"""Flask configuration for a federated journal instance."""

import json
import os

JWT_SECRET = os.environ.get('JWT_SECRET', '')
"""
Secret used to sign every token issued by this instance.

There is exactly one secret per instance; the application refuses to start
without it.
"""

JOURNAL_ID = os.environ.get('JOURNAL_ID', 't00')
"""Three-character code of this instance; suffix of its federated ids."""

JOURNAL_URL = os.environ.get('JOURNAL_URL', 'http://localhost:5000')
"""Public base URL of this instance, as seen by peers."""

FRONTEND_URL = os.environ.get('FRONTEND_URL', JOURNAL_URL)
"""Base URL of the user-facing site; login and dashboard pages live here."""

SUBMISSION_DIRECTORY = os.environ.get('SUBMISSION_DIRECTORY', './submissions')
"""Directory holding submission archives."""

SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI',
                                         'sqlite:///journal.db')

FEDERATION_PEERS = json.loads(os.environ.get('FEDERATION_PEERS', '{}'))
"""
Peer map: instance code to base URL.

Used to find the instance that owns a federated user, e.g.
``{"t01": "https://journal-one.example.org"}``.
"""

FEDERATION_TIMEOUT = float(os.environ.get('FEDERATION_TIMEOUT', '10'))
"""Timeout, in seconds, for every outbound call to a peer."""

AUTH_SESSION_COOKIE_NAME = os.environ.get('AUTH_SESSION_COOKIE_NAME',
                                          'journal_session')
SSO_COOKIE_NAME = os.environ.get('SSO_COOKIE_NAME', 'journal_sso')
AUTH_SESSION_COOKIE_SECURE = bool(int(
    os.environ.get('AUTH_SESSION_COOKIE_SECURE', '1')
))

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
JSON_LOGS = bool(int(os.environ.get('JSON_LOGS', '1')))
"""Emit structured JSON log records on the root logger."""
