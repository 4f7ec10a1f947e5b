"""HTTP routes of a federated journal instance."""

from typing import Any, Dict, Optional
from http import HTTPStatus
from urllib.parse import urlencode
import json
import logging

from flask import Blueprint, Response, current_app, jsonify, make_response, \
    redirect, request
from werkzeug.exceptions import BadRequest, Forbidden

from .auth import export_token_required, session_required, \
    set_session_cookie
from .context import current_archives, current_datastore, \
    current_orchestrator
from .exceptions import ImportFailed, InvalidToken
from .federation.translate import to_millis

logger = logging.getLogger(__name__)

blueprint = Blueprint('journal_federation', __name__, url_prefix='')

ZIP_MIME = 'application/zip'
SSO_COOKIE_MAX_AGE = 300


def _require(name: str) -> str:
    value = request.args.get(name)
    if not value:
        raise BadRequest(f'Missing parameter: {name}')
    return value


def _peer_url(journal: str) -> str:
    """Get the base URL of a configured peer, given its code or its URL."""
    peers = current_app.config.get('FEDERATION_PEERS', {})
    if journal in peers:
        return str(peers[journal])
    for url in peers.values():
        if url.rstrip('/') == journal.rstrip('/'):
            return url
    raise BadRequest(f'Unknown journal: {journal}')


def _frontend(path: str, **params: str) -> str:
    url = f'{current_app.config["FRONTEND_URL"].rstrip("/")}/{path}'
    return f'{url}?{urlencode(params)}' if params else url


def _sso_cookie() -> Optional[Dict[str, Any]]:
    raw = request.cookies.get(current_app.config['SSO_COOKIE_NAME'])
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        logger.debug('Malformed SSO cookie')
        return None
    return data if isinstance(data, dict) else None


# Users.


@blueprint.route('/federation/users/<string:user_id>', methods=['GET'])
def get_user(user_id: str) -> Response:
    """Describe one of our users to a peer."""
    try:
        data = current_orchestrator().lookup_local_user(user_id)
    except ValueError as e:
        raise BadRequest('The user is not from this journal') from e
    return jsonify(data)


# Single sign-on.


@blueprint.route('/federation/sso/begin', methods=['GET'])
def sso_begin() -> Response:
    """Send the user to a peer to log in with their account there."""
    remote_url = _peer_url(_require('journal'))
    redirect_url, state = current_orchestrator().begin_sso_login(remote_url)
    config = current_app.config
    response = redirect(redirect_url)
    response.set_cookie(config['SSO_COOKIE_NAME'],
                        json.dumps({'state': state, 'url': remote_url}),
                        max_age=SSO_COOKIE_MAX_AGE, httponly=True,
                        secure=config['AUTH_SESSION_COOKIE_SECURE'],
                        samesite='Lax')
    return response


@blueprint.route('/federation/sso/login', methods=['GET'])
def sso_login() -> Response:
    """
    A peer asks us to vouch for one of our users.

    Logged-in users are asked to confirm; anyone else logs in first.
    """
    params = {'redirectUrl': _require('from'), 'state': _require('state')}
    if getattr(request, 'auth', None) is not None:
        return redirect(_frontend('confirm_sso', **params))
    return redirect(_frontend('login', sso='true', **params))


@blueprint.route('/federation/sso/confirm', methods=['GET'])
@session_required
def sso_confirm() -> Response:
    """Hand the logged-in user over to the peer that asked for them."""
    callback_url = current_orchestrator().confirm_sso_login(
        request.auth, _require('state'), _require('redirectUrl')
    )
    return redirect(callback_url)


@blueprint.route('/federation/sso/verify', methods=['POST'])
def sso_verify() -> Response:
    """A peer checks a handoff token we minted."""
    try:
        data = current_orchestrator().verify_sso_handoff(_require('token'))
    except InvalidToken as e:
        raise Forbidden('The token is invalid') from e
    return jsonify(data)


@blueprint.route('/federation/sso/callback', methods=['GET'])
def sso_callback() -> Response:
    """A peer has vouched for a user; log them in here."""
    token, state = _require('token'), _require('state')
    cookie = _sso_cookie()
    if not cookie or not cookie.get('state') or cookie['state'] != state \
            or not isinstance(cookie.get('url'), str):
        raise Forbidden('Invalid state param')

    result = current_orchestrator().complete_sso_login(
        cookie['url'], token, state, cookie['state']
    )
    if result is None:
        raise Forbidden('Invalid or expired SSO token')
    user, session_token = result
    logger.info('%s logged in through %s', user.user_id, cookie['url'])
    response = redirect(_frontend('dashboard'))
    response.delete_cookie(current_app.config['SSO_COOKIE_NAME'])
    return set_session_cookie(response, session_token)


# Submissions exchanged with peers.


@blueprint.route('/federation/submissions/<string:submission_id>',
                 methods=['GET'])
@export_token_required
def get_submission_binary(submission_id: str) -> Response:
    """Send the archive of a submission to the peer importing it."""
    content = current_orchestrator().submission_binary(submission_id)
    content_type = request.headers.get('Content-Type') or ZIP_MIME
    response = make_response(content, HTTPStatus.OK)
    response.headers['Content-Type'] = content_type
    response.headers['Content-Disposition'] = \
        f'attachment; filename="{submission_id}.zip"'
    return response


@blueprint.route('/federation/submissions/<string:submission_id>/metadata',
                 methods=['GET'])
@export_token_required
def get_submission_metadata(submission_id: str) -> Response:
    """Send the metadata of a submission to the peer importing it."""
    return jsonify(current_orchestrator().submission_metadata(submission_id))


@blueprint.route('/federation/submissions/import', methods=['POST'])
def import_submission() -> Response:
    """A peer offers us one of its submissions."""
    remote_url = _peer_url(_require('from'))
    submission_id = _require('id')
    token = _require('token')
    try:
        submission = current_orchestrator().import_submission(
            remote_url, submission_id, token
        )
    except ImportFailed as e:
        logger.warning('Import of %s from %s refused: %s', submission_id,
                       remote_url, e)
        raise BadRequest('malformed request') from e
    return jsonify({'status': 'ok',
                    'submissionId': submission.submission_id})


@blueprint.route('/federation/submissions/<string:submission_id>/export',
                 methods=['POST'])
@session_required
def export_submission(submission_id: str) -> Response:
    """Offer one of the logged-in user's submissions to a peer."""
    remote_url = _peer_url(_require('to'))
    submission = current_datastore().get_submission(submission_id)
    if submission.author.user_id != request.auth.user_id:
        raise Forbidden('You may only export your own submissions')
    if not current_orchestrator().export_submission(submission_id,
                                                    remote_url):
        raise BadRequest('Failed to export the submission')
    return jsonify({'status': 'ok'})


# Browsing submission archives.


@blueprint.route('/submissions/<string:submission_id>/file', methods=['GET'])
@session_required
def get_file(submission_id: str) -> Response:
    """Get a file within a submission."""
    archive_id = current_datastore().get_submission_archive_id(submission_id)
    mime_type, contents = current_archives().extract_file_as_text(
        archive_id, _require('path')
    )
    return jsonify({'status': 'ok', 'mimeType': mime_type,
                    'contents': contents})


@blueprint.route('/submissions/<string:submission_id>/entries',
                 methods=['GET'])
@session_required
def get_entries(submission_id: str) -> Response:
    """List a directory within a submission."""
    archive_id = current_datastore().get_submission_archive_id(submission_id)
    entries = current_archives().list_directory(
        archive_id, request.args.get('path', '/')
    )
    return jsonify({
        'status': 'ok',
        'entries': [{
            'name': entry.name,
            'isDirectory': entry.is_directory,
            'lastModified': to_millis(entry.last_modified)
            if entry.last_modified else None
        } for entry in entries]
    })
