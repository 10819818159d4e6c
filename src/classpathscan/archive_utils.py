"""Zip archive access for archive-backed class file sources."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from classpathscan.types import (
    ARCHIVE_SCHEME,
    ARCHIVE_SEPARATOR,
    ArchiveAccess,
    ArchiveEntry,
    ArchiveReference,
    OPEN_FAILURES,
    ConstructionError,
    Location,
)

logger = logging.getLogger(__name__)


class ZipArchive:
    """Archive backend on top of :mod:`zipfile`.

    A ZipArchive can be backed by:
    - a path: every listing and every entry read opens its own ``ZipFile``,
      so entries may be opened concurrently from several threads
    - a caller-owned open ``ZipFile`` (borrowed): reads go through that
      handle, which is never closed here; serializing concurrent reads is
      the caller's job, and reads fail once the caller closes it
    - the bytes of an entry of another archive (see :meth:`nested`)
    """

    def __init__(
        self,
        source: str | Path | bytes | zipfile.ZipFile,
        location: Location | None = None,
        container: Location | None = None,
    ) -> None:
        """Initialize zip archive access.

        Args:
            source: Path of the archive file, the archive's bytes, or an open
                ZipFile to borrow.
            location: Location of the archive. Defaults to the ``jar:`` location
                of the archive's file path.
            container: Location of the enclosing archive when nested.

        Raises:
            ValueError: If ``source`` is bytes, or a ZipFile without a filename,
                and no location is given.
        """
        self._path: Path | None = None
        self._borrowed: zipfile.ZipFile | None = None
        self._data: bytes | None = None

        if isinstance(source, zipfile.ZipFile):
            self._borrowed = source
            if location is None:
                if not source.filename:
                    raise ValueError(
                        "A location is required for a zip archive without a filename"
                    )
                location = Location.of_archive(source.filename)
        elif isinstance(source, bytes):
            self._data = source
            if location is None:
                raise ValueError("A location is required for an in-memory zip archive")
        else:
            self._path = Path(source)
            if location is None:
                location = Location.of_archive(self._path)

        self._location = location
        self._container = container

    @classmethod
    def nested(cls, outer: ArchiveAccess, entry_name: str) -> ZipArchive:
        """Open an entry of ``outer`` as an archive of its own.

        The entry's bytes are read once, here; the nested archive's location
        is ``outer.location`` with ``entry_name`` appended.

        Raises:
            ConstructionError: If the entry cannot be read from ``outer``.
        """
        location = outer.location.append(entry_name)
        try:
            with outer.open_entry(entry_name) as stream:
                data = stream.read()
        except OPEN_FAILURES as exc:
            raise ConstructionError(
                f"Cannot read nested archive {location}: {exc}"
            ) from exc

        return cls(data, location=location, container=outer.location)

    @property
    def location(self) -> Location:
        return self._location

    @property
    def container(self) -> Location | None:
        return self._container

    @contextmanager
    def _open_zip(self) -> Iterator[zipfile.ZipFile]:
        """Context manager for opening the zip file.

        Yields:
            ZipFile instance for reading entries. A borrowed handle is
            yielded as-is and left open.
        """
        if self._borrowed is not None:
            if self._borrowed.fp is None:
                raise ValueError(f"Zip archive {self._location} was already closed")
            yield self._borrowed
            return

        source = io.BytesIO(self._data) if self._data is not None else self._path
        with zipfile.ZipFile(source, "r") as zip_file:
            yield zip_file

    def entries(self) -> list[ArchiveEntry]:
        """Read the entry directory.

        Returns:
            Entries in archive order, directories included.
        """
        with self._open_zip() as zip_file:
            entries = [
                ArchiveEntry(info.filename, info.file_size)
                for info in zip_file.infolist()
            ]
        logger.debug("Read %d entries from %s", len(entries), self._location)
        return entries

    def open_entry(self, name: str) -> BinaryIO:
        """Read one entry and return a new stream over its bytes.

        Raises:
            KeyError: If there is no entry named ``name``.
        """
        with self._open_zip() as zip_file:
            return io.BytesIO(zip_file.read(name))

    def __repr__(self) -> str:
        return f"ZipArchive({self._location.uri!r})"


def file_uri_to_path(uri: str) -> Path:
    """Convert a ``file:`` URI to a filesystem path."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"Not a file URI: {uri}")
    return Path(url2pathname(parsed.path))


def split_archive_uri(uri: str) -> tuple[Path, list[str], str]:
    """Split a ``jar:`` URI into its archive path, nested entries and prefix.

    ``jar:file:/app.jar!/lib/inner.jar!/com/acme/`` splits into
    ``(Path("/app.jar"), ["lib/inner.jar"], "com/acme/")``. Every part between
    the first and the last ``!/`` names a nested archive; the last part is the
    entry prefix (empty when the URI addresses a whole archive).

    Raises:
        ValueError: If ``uri`` is not a ``jar:file:`` URI.
    """
    if not uri.startswith(ARCHIVE_SCHEME):
        raise ValueError(f"Not an archive URI: {uri}")

    parts = uri[len(ARCHIVE_SCHEME):].split(ARCHIVE_SEPARATOR)
    path = file_uri_to_path(parts[0])
    if len(parts) == 1:
        return path, [], ""
    nested = [unquote(part) for part in parts[1:-1]]
    return path, nested, unquote(parts[-1])


def open_archive_uri(uri: str) -> ArchiveReference:
    """Build an ArchiveReference for a ``jar:`` URI.

    Nested archives along the way are read into memory; the outermost
    archive is accessed by path.

    Raises:
        ValueError: If ``uri`` is not a ``jar:file:`` URI.
        ConstructionError: If a nested archive cannot be read.
    """
    path, nested, prefix = split_archive_uri(uri)
    archive: ArchiveAccess = ZipArchive(path)
    for entry_name in nested:
        archive = ZipArchive.nested(archive, entry_name)
    return ArchiveReference(archive=archive, entry_prefix=prefix)
