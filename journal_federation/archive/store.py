"""
Zip archives holding the files of a submission.

Each archive lives at ``<archive id>.zip`` in a single submission directory.
Paths requested *inside* an archive are resolved only against the archive's
own table of contents; they are never joined onto a host path.
"""

from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple
from base64 import b64encode
from contextlib import contextmanager
from datetime import datetime
import io
import logging
import os
import posixpath
import re
import tempfile
import uuid
import zipfile

import filetype
from pytz import UTC

from ..domain import DirectoryEntry
from ..exceptions import NotFound, IsDirectory, ArchiveStorageError

logger = logging.getLogger(__name__)

ARCHIVE_ID = re.compile(r'^[0-9a-f]{32}$')
ROOT = ''

ZIP_MIME = 'application/zip'
TEXT_MIME = 'text/plain'
BINARY_MIME = 'application/octet-stream'


class _TocEntry(NamedTuple):
    is_directory: bool
    last_modified: Optional[datetime]
    info: Optional[zipfile.ZipInfo] = None
    """Backing zip member; ``None`` for directories implied by children."""


def sniff(content: bytes) -> Optional[str]:
    """Guess the MIME type of ``content`` from its leading bytes."""
    mime: Optional[str] = filetype.guess_mime(content)
    return mime


def is_zip(content: bytes) -> bool:
    """Determine whether ``content`` is a readable zip archive."""
    return sniff(content) == ZIP_MIME \
        and zipfile.is_zipfile(io.BytesIO(content))


def normalize(path: str) -> Optional[str]:
    """
    Normalize a path inside an archive.

    Leading and trailing slashes are ignored, so ``/`` and the empty string
    both name the root. Returns ``None`` if the path escapes the archive.
    """
    stripped = path.strip('/')
    if not stripped:
        return ROOT
    normalized = posixpath.normpath(stripped)
    if normalized == '.':
        return ROOT
    if normalized == '..' or normalized.startswith('../'):
        return None
    return normalized


def classify(data: bytes) -> Tuple[str, str]:
    """
    Get the MIME type of ``data`` and a JSON-friendly rendering of it.

    Recognized non-text formats are base64-encoded. Anything else is returned
    as text if it is valid UTF-8 without NUL bytes, and as base64 otherwise.
    """
    mime = sniff(data)
    if mime is not None and not mime.startswith('text/'):
        return mime, b64encode(data).decode('ascii')
    try:
        text: Optional[str] = data.decode('utf-8')
    except UnicodeDecodeError:
        text = None
    if text is None or '\x00' in text:
        return mime or BINARY_MIME, b64encode(data).decode('ascii')
    return mime or TEXT_MIME, text


def package(original_name: str, content: bytes) -> bytes:
    """
    Get ``content`` as a zip archive.

    Content that already is a zip archive is returned unchanged; anything else
    becomes the single entry ``original_name`` of a new archive.
    """
    if is_zip(content):
        return content
    name = normalize(original_name)
    if not name:
        raise ValueError(f'Cannot store a file named {original_name!r}')
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(name, content)
    return buffer.getvalue()


def _modified(info: zipfile.ZipInfo) -> Optional[datetime]:
    try:
        return datetime(*info.date_time, tzinfo=UTC)
    except ValueError:
        return None


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None or b is None:
        return a or b
    return max(a, b)


def _table_of_contents(zf: zipfile.ZipFile) -> Dict[str, _TocEntry]:
    """
    Map every normalized entry path in ``zf`` to its entry.

    Directories that exist only as prefixes of deeper entries are included.
    Members whose names escape the archive are left out.
    """
    toc: Dict[str, _TocEntry] = {}
    for info in zf.infolist():
        name = normalize(info.filename)
        if not name:
            logger.debug('Skipping archive member %r', info.filename)
            continue
        toc[name] = _TocEntry(info.is_dir(), _modified(info), info)

    for name, entry in list(toc.items()):
        parent = posixpath.dirname(name)
        while parent:
            known = toc.get(parent)
            if known is None or known.info is None:
                last_modified = known.last_modified if known else None
                toc[parent] = _TocEntry(
                    True, _later(last_modified, entry.last_modified)
                )
            parent = posixpath.dirname(parent)
    return toc


class ArchiveStore(object):
    """Creates, reads and removes the archives in a submission directory."""

    def __init__(self, directory: str) -> None:
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def path_for(self, archive_id: str) -> str:
        """Get the host path of an archive."""
        if not isinstance(archive_id, str) or not ARCHIVE_ID.match(archive_id):
            raise NotFound(f'Not an archive identifier: {archive_id!r}')
        return os.path.join(self.directory, f'{archive_id}.zip')

    def exists(self, archive_id: str) -> bool:
        """Determine whether an archive is present."""
        return os.path.exists(self.path_for(archive_id))

    def reserve(self) -> str:
        """Generate a fresh archive identifier that is not in use."""
        while True:
            archive_id = uuid.uuid4().hex
            if not self.exists(archive_id):
                return archive_id

    def store(self, archive_id: str, content: bytes) -> None:
        """
        Write ``content`` as the archive ``archive_id``.

        The content is written to a temporary file in the same directory and
        then renamed into place, so readers never see a partial archive.

        Raises
        ------
        :class:`.ArchiveStorageError`
            Raised if the archive already exists or cannot be written.

        """
        path = self.path_for(archive_id)
        if os.path.exists(path):
            raise ArchiveStorageError(f'Archive {archive_id} already exists')
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(dir=self.directory,
                                             suffix='.part',
                                             delete=False) as f:
                temp_path = f.name
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)
            raise ArchiveStorageError(f'Could not write {archive_id}: {e}') \
                from e
        logger.debug('Stored archive %s (%i bytes)', archive_id, len(content))

    def compress(self, original_name: str, content: bytes) -> str:
        """
        Store an uploaded file as a new archive.

        Parameters
        ----------
        original_name : str
            Name of the uploaded file; becomes the entry name if ``content``
            has to be wrapped in a new archive.
        content : bytes
            Either a zip archive, which is stored as-is, or a single file.

        Returns
        -------
        str
            Identifier of the new archive.

        """
        blob = package(original_name, content)
        archive_id = self.reserve()
        self.store(archive_id, blob)
        return archive_id

    def read(self, archive_id: str) -> bytes:
        """Get the raw bytes of an archive."""
        try:
            with open(self.path_for(archive_id), 'rb') as f:
                return f.read()
        except FileNotFoundError as e:
            raise NotFound(f'No such archive: {archive_id}') from e

    def delete(self, archive_id: str) -> None:
        """
        Remove an archive.

        Removing an archive that does not exist succeeds.

        Raises
        ------
        :class:`.ArchiveStorageError`
            Raised if the archive exists but cannot be removed.

        """
        try:
            os.remove(self.path_for(archive_id))
        except FileNotFoundError:
            logger.debug('Archive %s was already gone', archive_id)
        except OSError as e:
            raise ArchiveStorageError(f'Could not delete {archive_id}: {e}') \
                from e

    @contextmanager
    def _open(self, archive_id: str) -> Iterator[zipfile.ZipFile]:
        try:
            with zipfile.ZipFile(self.path_for(archive_id)) as zf:
                yield zf
        except FileNotFoundError as e:
            raise NotFound(f'No such archive: {archive_id}') from e
        except zipfile.BadZipFile as e:
            raise ArchiveStorageError(f'Archive {archive_id} is corrupt') \
                from e

    def extract_file_as_text(self, archive_id: str,
                             path: str) -> Tuple[str, str]:
        """
        Get the contents of a file within an archive.

        Parameters
        ----------
        archive_id : str
        path : str
            Path of the file within the archive.

        Returns
        -------
        str
            The sniffed MIME type.
        str
            The file contents: decoded text for text files, base64 for
            anything else.

        Raises
        ------
        :class:`.NotFound`
            Raised if ``path`` does not name an entry in the archive.
        :class:`.IsDirectory`
            Raised if ``path`` names a directory.

        """
        name = normalize(path)
        if name is None:
            raise NotFound(f'{path} is not in the archive')
        if name == ROOT:
            raise IsDirectory(f'{path} is a directory')
        with self._open(archive_id) as zf:
            entry = _table_of_contents(zf).get(name)
            if entry is None:
                raise NotFound(f'{path} is not in the archive')
            if entry.is_directory or entry.info is None:
                raise IsDirectory(f'{path} is a directory')
            data = zf.read(entry.info)
        return classify(data)

    def list_directory(self, archive_id: str,
                       path: str) -> List[DirectoryEntry]:
        """
        Get the direct children of a directory within an archive.

        ``/`` lists the root of the archive. Directories come first, then
        files, each in name order.

        Raises
        ------
        :class:`.NotFound`
            Raised if ``path`` is neither the root nor a directory.

        """
        name = normalize(path)
        if name is None:
            raise NotFound(f'{path} is not in the archive')
        with self._open(archive_id) as zf:
            toc = _table_of_contents(zf)
        if name != ROOT and not (name in toc and toc[name].is_directory):
            raise NotFound(f'{path} is not a directory in the archive')

        entries = [
            DirectoryEntry(name=entry_name,
                           is_directory=entry.is_directory,
                           last_modified=entry.last_modified)
            for entry_name, entry in toc.items()
            if posixpath.dirname(entry_name) == name
        ]
        return sorted(entries, key=lambda e: (not e.is_directory, e.name))
