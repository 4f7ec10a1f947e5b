"""Provides an app factory for a federated journal instance."""

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import BadRequest, NotFound, Forbidden, \
    Unauthorized, InternalServerError, HTTPException

from . import context, exceptions, routes
from .app_logging import setup_logger
from .auth import load_session

logger = logging.getLogger(__name__)


def jsonify_exception(error: HTTPException):
    exc_resp = error.get_response()
    response = jsonify(reason=error.description)
    response.status_code = exc_resp.status_code
    return response


def _not_found(error: Exception):
    return jsonify_exception(NotFound(str(error) or None))


def _forbidden(error: Exception):
    return jsonify_exception(Forbidden(str(error) or None))


def _storage_failed(error: Exception):
    logger.critical('Archive storage failed: %s', error)
    return jsonify_exception(InternalServerError('archive storage failed'))


def create_app() -> Flask:
    """Initialize an instance of the journal federation service."""
    app = Flask('journal_federation')
    app.config.from_pyfile('config.py')
    if not app.config.get('JWT_SECRET'):
        raise RuntimeError('Configuration error: JWT_SECRET is not set')

    setup_logger(app.config['LOG_LEVEL'], app.config['JSON_LOGS'])
    context.init_app(app)

    app.before_request(load_session)
    app.register_blueprint(routes.blueprint)

    app.errorhandler(NotFound)(jsonify_exception)
    app.errorhandler(BadRequest)(jsonify_exception)
    app.errorhandler(Unauthorized)(jsonify_exception)
    app.errorhandler(Forbidden)(jsonify_exception)
    app.errorhandler(InternalServerError)(jsonify_exception)

    app.errorhandler(exceptions.SubmissionNotFound)(_not_found)
    app.errorhandler(exceptions.UserNotFound)(_not_found)
    app.errorhandler(exceptions.NotFound)(_not_found)
    app.errorhandler(exceptions.IsDirectory)(_not_found)
    app.errorhandler(exceptions.InvalidToken)(_forbidden)
    app.errorhandler(exceptions.ArchiveStorageError)(_storage_failed)
    return app
