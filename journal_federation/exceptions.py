"""Exceptions raised by the federation core."""


class InvalidToken(RuntimeError):
    """Token is malformed, has a bad signature, or has the wrong purpose."""


class ExpiredToken(InvalidToken):
    """Token was valid once, but its expiry has passed."""


class NotFound(RuntimeError):
    """A path does not name an entry in the archive, or the archive is gone."""


class IsDirectory(RuntimeError):
    """A path names a directory where a file was expected."""


class ArchiveStorageError(RuntimeError):
    """
    Writing or removing an archive on local storage failed.

    This is the one failure that can leave local state inconsistent, so it is
    never folded into a user-facing error.
    """


class RemoteLookupFailed(RuntimeError):
    """A user could not be retrieved from a remote instance."""


class ImportFailed(RuntimeError):
    """A submission could not be imported from a remote instance."""


class SubmissionNotFound(RuntimeError):
    """No local submission exists with the requested identifier."""


class UserNotFound(RuntimeError):
    """No local user exists with the requested federated identifier."""
