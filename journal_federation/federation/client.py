"""
Outbound calls from this journal to its peers.

Every call is a single HTTP request with a bounded timeout and no retries.
Failures are folded into ``None``/``False`` (or :class:`.RemoteLookupFailed`)
at the public boundary, but each one is first classified as a
:class:`RemoteFailure` and logged with its ``remote_url``, ``reason`` and
``detail`` as structured extras.
"""

from typing import Any, NamedTuple, Optional
from enum import Enum
import logging

import requests

from .. import domain
from ..exceptions import RemoteLookupFailed
from . import translate

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class FailureReason(str, Enum):
    """Why a call to a peer did not produce a usable answer."""

    NETWORK = 'network'
    """The peer could not be reached, or did not answer in time."""

    HTTP_STATUS = 'http-status'
    """The peer answered with something other than 200."""

    REJECTED = 'rejected'
    """The peer answered, but not with ``status: ok``."""

    MALFORMED = 'malformed'
    """The answer could not be decoded into the expected shape."""


class RemoteFailure(NamedTuple):
    """A classified failure of a call to a peer."""

    reason: FailureReason
    url: str
    detail: str = ''


class RemoteCallFailed(Exception):
    """Carries a :class:`RemoteFailure` out of a helper; never leaves here."""

    def __init__(self, failure: RemoteFailure) -> None:
        super(RemoteCallFailed, self).__init__(failure.detail)
        self.failure = failure


def _endpoint(base_url: str, path: str) -> str:
    return f'{base_url.rstrip("/")}/federation/{path}'


class FederationClient(object):
    """
    Talks to other journal instances on behalf of this one.

    Parameters
    ----------
    local_url : str
        Public base URL of this instance, sent to peers as ``from``.
    timeout : float
        Seconds to wait for any single call.

    """

    def __init__(self, local_url: str,
                 timeout: float = DEFAULT_TIMEOUT) -> None:
        self.local_url = local_url
        self.timeout = timeout
        self._session = requests.Session()
        self._session.mount('http://',
                            requests.adapters.HTTPAdapter(max_retries=0))
        self._session.mount('https://',
                            requests.adapters.HTTPAdapter(max_retries=0))

    def _record(self, failure: RemoteFailure) -> RemoteFailure:
        logger.warning('Call to %s failed: %s', failure.url,
                       failure.reason.value,
                       extra={'remote_url': failure.url,
                              'reason': failure.reason.value,
                              'detail': failure.detail})
        return failure

    def _request(self, method: str, url: str,
                 **kwargs: Any) -> requests.Response:
        """Make a request, requiring an HTTP 200 answer."""
        try:
            response = self._session.request(method, url,
                                             timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise RemoteCallFailed(
                RemoteFailure(FailureReason.NETWORK, url, str(e))
            ) from e
        if response.status_code != 200:
            raise RemoteCallFailed(RemoteFailure(
                FailureReason.HTTP_STATUS, url,
                f'HTTP {response.status_code}'
            ))
        return response

    def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Make a request and decode the JSON body of the answer."""
        response = self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallFailed(
                RemoteFailure(FailureReason.MALFORMED, url, 'Not JSON')
            ) from e

    def _ok(self, method: str, url: str, **kwargs: Any) -> dict:
        """Make a request whose answer must be a JSON object with ``ok``."""
        data = self._json(method, url, **kwargs)
        if not isinstance(data, dict) or data.get('status') != 'ok':
            status = data.get('status') if isinstance(data, dict) else None
            raise RemoteCallFailed(RemoteFailure(
                FailureReason.REJECTED, url, f'Status was {status!r}'
            ))
        return data

    def fetch_remote_user(self, remote_url: str,
                          federated_user_id: str) -> domain.FederatedUserStub:
        """
        Look up a user owned by a peer.

        Parameters
        ----------
        remote_url : str
            Base URL of the instance that owns the user.
        federated_user_id : str

        Returns
        -------
        :class:`domain.FederatedUserStub`

        Raises
        ------
        :class:`.RemoteLookupFailed`
            Raised if the peer is unreachable, or does not vouch for the user.

        """
        url = _endpoint(remote_url, f'users/{federated_user_id}')
        try:
            data = self._ok('GET', url)
            try:
                return translate.parse_user_stub(data, federated_user_id)
            except ValueError as e:
                raise RemoteCallFailed(
                    RemoteFailure(FailureReason.MALFORMED, url, str(e))
                ) from e
        except RemoteCallFailed as e:
            failure = self._record(e.failure)
            raise RemoteLookupFailed(
                f'Lookup of {federated_user_id} failed: {failure.reason.value}'
            ) from e

    def verify_sso_token(self, remote_url: str,
                         token: str) -> Optional[domain.SessionUser]:
        """
        Ask a peer who an SSO handoff token vouches for.

        Returns ``None`` if the peer cannot be reached, rejects the token, or
        does not name the user.
        """
        url = _endpoint(remote_url, 'sso/verify')
        try:
            data = self._ok('POST', url, params={'token': token})
        except RemoteCallFailed as e:
            self._record(e.failure)
            return None
        user = translate.parse_sso_user(data)
        if user is None:
            self._record(RemoteFailure(FailureReason.MALFORMED, url,
                                       'No user id in response'))
        return user

    def fetch_submission_binary(self, remote_url: str, submission_id: str,
                                export_token: str) -> Optional[bytes]:
        """Get the archive of a submission that a peer exported to us."""
        url = _endpoint(remote_url, f'submissions/{submission_id}')
        try:
            response = self._request(
                'GET', url,
                headers={'Authorization': f'Bearer {export_token}',
                         'Content-Type': 'application/zip'},
                params={'from': self.local_url}
            )
        except RemoteCallFailed as e:
            self._record(e.failure)
            return None
        if not response.content:
            self._record(RemoteFailure(FailureReason.MALFORMED, url,
                                       'Empty archive'))
            return None
        content: bytes = response.content
        return content

    def fetch_submission_metadata(self, remote_url: str, submission_id: str,
                                  export_token: str) \
            -> Optional[domain.ImportedSubmission]:
        """Get the metadata of a submission that a peer exported to us."""
        url = _endpoint(remote_url, f'submissions/{submission_id}/metadata')
        try:
            data = self._ok(
                'GET', url,
                headers={'Authorization': f'Bearer {export_token}'},
                params={'from': self.local_url}
            )
            try:
                return translate.parse_metadata(data)
            except ValueError as e:
                raise RemoteCallFailed(
                    RemoteFailure(FailureReason.MALFORMED, url, str(e))
                ) from e
        except RemoteCallFailed as e:
            self._record(e.failure)
            return None

    def notify_import(self, remote_url: str, submission_id: str,
                      export_token: str) -> bool:
        """Tell a peer to import one of our submissions; ``True`` on 200."""
        url = _endpoint(remote_url, 'submissions/import')
        try:
            self._request('POST', url, params={'from': self.local_url,
                                               'id': submission_id,
                                               'token': export_token})
        except RemoteCallFailed as e:
            self._record(e.failure)
            return False
        return True
