"""
The cross-instance protocol: export, import and single sign-on.

Importing a submission touches three things that can fail independently:
peers, local archive storage and the database. Nothing is written until both
the archive and its metadata are in hand and every referenced user has been
resolved. The archive is then written under a fresh identifier, and only after
that are the users, submission, reviews and comments committed in a single
transaction. If that transaction fails the archive is removed again, so no
submission ever refers to a missing archive.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode
import logging
import secrets

from .. import domain
from ..archive import ArchiveStore, package
from ..exceptions import ArchiveStorageError, ImportFailed, \
    RemoteLookupFailed, UserNotFound
from ..services.datastore import Datastore
from ..tokens import TokenService
from . import translate
from .client import FederationClient

logger = logging.getLogger(__name__)

STATE_BYTES = 32


def _url(base_url: str, path: str, **params: str) -> str:
    return f'{base_url.rstrip("/")}/federation/{path}?{urlencode(params)}'


class FederationOrchestrator(object):
    """
    Realizes the federation protocol for one journal instance.

    Parameters
    ----------
    tokens : :class:`.TokenService`
    archives : :class:`.ArchiveStore`
    client : :class:`.FederationClient`
    datastore : :class:`.Datastore`
    journal_id : str
        Instance code of this journal.
    journal_url : str
        Public base URL of this journal.
    peers : dict
        Instance codes of peers, mapped to their base URLs.

    """

    def __init__(self, tokens: TokenService, archives: ArchiveStore,
                 client: FederationClient, datastore: Datastore,
                 journal_id: str, journal_url: str,
                 peers: Optional[Mapping[str, str]] = None) -> None:
        self.tokens = tokens
        self.archives = archives
        self.client = client
        self.datastore = datastore
        self.journal_id = journal_id
        self.journal_url = journal_url
        self.peers = dict(peers or {})

    # Export side.

    def export_submission(self, submission_id: str, remote_url: str) -> bool:
        """
        Offer a local submission to a peer.

        Mints an export token for the submission and asks the peer to import
        it; the peer then fetches the archive and metadata with that token.

        Returns
        -------
        bool
            Whether the peer accepted the submission.

        Raises
        ------
        :class:`.SubmissionNotFound`
            Raised if there is no such local submission.

        """
        self.datastore.get_submission(submission_id)
        token = self.tokens.issue_export_authorization(submission_id)
        accepted = self.client.notify_import(remote_url, submission_id, token)
        logger.info('Export of %s to %s %s', submission_id, remote_url,
                    'accepted' if accepted else 'refused')
        return accepted

    def submission_binary(self, submission_id: str) -> bytes:
        """Get the archive of a local submission, as sent to peers."""
        archive_id = self.datastore.get_submission_archive_id(submission_id)
        return self.archives.read(archive_id)

    def submission_metadata(self, submission_id: str) -> Dict[str, Any]:
        """Get the metadata of a local submission, as sent to peers."""
        metadata = self.datastore.get_submission_metadata(submission_id)
        return translate.serialize_metadata(metadata)

    def lookup_local_user(self, federated_id: str) -> Dict[str, Any]:
        """
        Describe one of our users to a peer.

        Raises
        ------
        ValueError
            Raised if ``federated_id`` was not issued by this instance.
        :class:`.UserNotFound`
            Raised if there is no such user.

        """
        if domain.instance_code(federated_id) != self.journal_id:
            raise ValueError(f'{federated_id} is not a user of this journal')
        user = self.datastore.find_user_by_federated_id(federated_id)
        if user is None:
            raise UserNotFound(f'No such user: {federated_id}')
        return translate.user_response(user)

    # Import side.

    def _resolve_users(self, remote_url: str,
                       federated_ids: List[str]) \
            -> List[domain.FederatedUserStub]:
        """Get the stubs of all users in ``federated_ids`` not known here."""
        unknown = []
        for federated_id in federated_ids:
            if self.datastore.find_user_by_federated_id(federated_id):
                continue
            code = domain.instance_code(federated_id)
            if code == self.journal_id:
                raise ImportFailed(f'{federated_id} is not a user here')
            peer_url = self.peers.get(code, remote_url)
            try:
                unknown.append(
                    self.client.fetch_remote_user(peer_url, federated_id)
                )
            except RemoteLookupFailed as e:
                raise ImportFailed(f'Could not resolve {federated_id}') from e
        return unknown

    def _discard(self, archive_id: str) -> None:
        try:
            self.archives.delete(archive_id)
        except ArchiveStorageError as e:
            logger.critical('Orphaned archive %s could not be removed: %s',
                            archive_id, e)

    def import_submission(self, remote_url: str, submission_id: str,
                          token: str) -> domain.Submission:
        """
        Copy a submission that a peer has exported to us.

        Parameters
        ----------
        remote_url : str
            Base URL of the exporting peer.
        submission_id : str
            Identifier of the submission on the peer.
        token : str
            Export token minted by the peer for this submission.

        Returns
        -------
        :class:`domain.Submission`
            The new local submission.

        Raises
        ------
        :class:`.ImportFailed`
            Raised if anything goes wrong that leaves no trace locally.
        :class:`.ArchiveStorageError`
            Raised if the archive could not be written.

        """
        binary = self.client.fetch_submission_binary(remote_url,
                                                     submission_id, token)
        if binary is None:
            raise ImportFailed(f'Could not fetch {submission_id}')
        metadata = self.client.fetch_submission_metadata(remote_url,
                                                         submission_id, token)
        if metadata is None:
            raise ImportFailed(f'Could not fetch metadata of {submission_id}')

        shadows = self._resolve_users(remote_url, metadata.federated_users)
        try:
            blob = package(metadata.publication.name, binary)
        except ValueError as e:
            raise ImportFailed(f'Cannot store {submission_id}: {e}') from e

        archive_id = self.archives.reserve()
        try:
            self.archives.store(archive_id, blob)
        except ArchiveStorageError as e:
            logger.critical('Could not store archive %s for %s from %s: %s',
                            archive_id, submission_id, remote_url, e)
            raise

        try:
            with self.datastore.transaction():
                for stub in shadows:
                    self.datastore.create_shadow_user(stub, commit=False)
                submission = self.datastore.create_submission_from_metadata(
                    translate.thread_reviews(metadata), archive_id,
                    commit=False
                )
        except Exception as e:
            logger.error('Import of %s from %s failed: %s', submission_id,
                         remote_url, e)
            self._discard(archive_id)
            raise ImportFailed(f'Could not save {submission_id}') from e

        logger.info('Imported %s from %s as %s', submission_id, remote_url,
                    submission.submission_id)
        return submission

    # Single sign-on.

    def _is_peer(self, code: str, url: str) -> bool:
        peer_url = self.peers.get(code)
        return peer_url is not None \
            and peer_url.rstrip('/') == url.rstrip('/')

    def begin_sso_login(self, remote_url: str) -> Tuple[str, str]:
        """
        Start logging in with an account on a peer.

        Returns
        -------
        str
            URL of the peer's login endpoint to send the user to.
        str
            The ``state`` value to keep (e.g. in a cookie) until the callback.

        """
        state = secrets.token_urlsafe(STATE_BYTES)
        return _url(remote_url, 'sso/login', **{'from': self.journal_url,
                                                 'state': state}), state

    def confirm_sso_login(self, user: domain.SessionUser, state: str,
                          redirect_url: str) -> str:
        """Get the callback URL that hands ``user`` over to another journal."""
        token = self.tokens.issue_sso_handoff(user.user_id, state)
        return _url(redirect_url, 'sso/callback', token=token, state=state,
                    **{'from': self.journal_url})

    def verify_sso_handoff(self, token: str) -> Dict[str, Any]:
        """
        Describe the user an SSO handoff token was minted for.

        Raises
        ------
        :class:`.InvalidToken`
            Raised if the token is not a valid SSO handoff token.
        :class:`.UserNotFound`
            Raised if the user no longer exists.

        """
        claims = self.tokens.verify_sso_handoff(token)
        user = self.datastore.find_user_by_federated_id(claims.user_id)
        if user is None:
            raise UserNotFound(f'No such user: {claims.user_id}')
        return translate.user_response(user)

    def complete_sso_login(self, remote_url: str, token: str, state: str,
                           expected_state: Optional[str]) \
            -> Optional[Tuple[domain.SessionUser, str]]:
        """
        Finish logging in with an account on a peer.

        The user is created locally the first time they log in. A peer may
        only vouch for its own users: an id carrying our instance code, or the
        code of any journal other than the one at ``remote_url``, is refused.

        Returns
        -------
        tuple or None
            The local user and a new session token, or ``None`` if the state
            does not match or the peer does not vouch for the token.

        """
        if not expected_state or state != expected_state:
            logger.debug('SSO state mismatch')
            return None
        vouched = self.client.verify_sso_token(remote_url, token)
        if vouched is None:
            return None
        code = domain.instance_code(vouched.user_id)
        if code == self.journal_id or not self._is_peer(code, remote_url):
            logger.warning('%s vouched for %s, which is not its user',
                           remote_url, vouched.user_id)
            return None
        user = self.datastore.find_user_by_federated_id(vouched.user_id)
        if user is None:
            user = self.datastore.create_user(vouched)
            logger.info('Created %s on first login from %s', user.user_id,
                        remote_url)
        return user, self.tokens.issue_session(user)
