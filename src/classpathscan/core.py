"""Class file sources for directories, archives and whole classpaths."""

from __future__ import annotations

import fnmatch
import logging
import os
import stat
import warnings
import zipfile
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import BinaryIO

from classpathscan.archive_utils import (
    ZipArchive,
    file_uri_to_path,
    open_archive_uri,
    split_archive_uri,
)
from classpathscan.types import (
    CLASS_FILE_SUFFIX,
    ArchiveAccess,
    ArchiveEntry,
    ArchiveReference,
    ConstructionError,
    FilterPolicy,
    Location,
    MissingClasspathEntryWarning,
    Resource,
    as_policy,
)

logger = logging.getLogger(__name__)

PolicyLike = FilterPolicy | Callable[[Location], bool] | None
ClasspathEntry = (
    str | os.PathLike | Location | ArchiveReference | ArchiveAccess | zipfile.ZipFile
)


def _parse_suffix(suffix: str | None) -> str:
    """Resolve the class file suffix from constructor and environment variable.

    Args:
        suffix: Suffix from constructor; takes precedence.

    Returns:
        Suffix matched literally against file and entry names.
    """
    if suffix is not None:
        return suffix

    env_suffix = os.environ.get("CLASSPATHSCAN_SUFFIX", "")
    if env_suffix.strip():
        return env_suffix.strip()

    return CLASS_FILE_SUFFIX


def _file_opener(path: Path) -> Callable[[], BinaryIO]:
    def open_file() -> BinaryIO:
        return path.open("rb")

    return open_file


def _entry_opener(archive: ArchiveAccess, name: str) -> Callable[[], BinaryIO]:
    def open_entry() -> BinaryIO:
        return archive.open_entry(name)

    return open_entry


def _class_files_beneath(prefix: str, suffix: str) -> Callable[[ArchiveEntry], bool]:
    def is_candidate(entry: ArchiveEntry) -> bool:
        return entry.name.startswith(prefix) and entry.name.endswith(suffix)

    return is_candidate


def _raise(error: OSError) -> None:
    raise error


class DirectorySource:
    """Class files found by walking a directory tree.

    The walk happens eagerly in the constructor and its result is kept as a
    mapping of Location to Resource; the files themselves are only read when
    a resource is opened.
    """

    def __init__(
        self,
        root: str | os.PathLike,
        policy: PolicyLike = None,
        suffix: str | None = None,
    ) -> None:
        """Scan a directory tree.

        Args:
            root: Directory to walk. A missing root yields no resources.
            policy: Filter policy (or plain predicate) applied to each candidate.
            suffix: Class file suffix. Can also be set via CLASSPATHSCAN_SUFFIX.

        Raises:
            ConstructionError: If the tree cannot be walked.
        """
        self._root = Path(root).absolute()
        self._policy = as_policy(policy)
        self._suffix = _parse_suffix(suffix)
        self._resources: dict[Location, Resource] = {}

        if not self._root.exists():
            logger.debug("Directory %s does not exist, nothing to scan", self._root)
            return

        for path in self._candidate_files():
            location = Location.of(path)
            if self._policy.include(location):
                self._resources[location] = Resource(location, _file_opener(path))

        logger.debug("Found %d class files in %s", len(self._resources), self._root)

    def _candidate_files(self) -> Iterator[Path]:
        """Yield regular files below the root whose names end with the suffix.

        Directory symlinks are not followed.

        Raises:
            ConstructionError: On any I/O failure during the walk.
        """
        try:
            if self._root.is_file():
                if self._root.name.endswith(self._suffix):
                    yield self._root
                return

            for dirpath, dirnames, filenames in os.walk(self._root, onerror=_raise):
                dirnames.sort()
                for filename in sorted(filenames):
                    if not filename.endswith(self._suffix):
                        continue
                    path = Path(dirpath, filename)
                    # follows file symlinks; a dangling one raises here
                    if stat.S_ISREG(path.stat().st_mode):
                        yield path
        except OSError as exc:
            raise ConstructionError(
                f"Cannot scan directory {self._root}: {exc}"
            ) from exc

    @property
    def root(self) -> Path:
        return self._root

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Resource):
            item = item.location
        return item in self._resources

    def __repr__(self) -> str:
        return f"DirectorySource({str(self._root)!r})"


class ArchiveSource:
    """Class files contained in an archive, optionally below an entry prefix.

    The entry directory is read in the constructor. Filtering, location
    synthesis, policy evaluation and Resource creation happen lazily, each
    time the source is iterated.
    """

    def __init__(
        self,
        reference: ArchiveReference,
        policy: PolicyLike = None,
        suffix: str | None = None,
    ) -> None:
        """Read the archive's entry directory.

        Args:
            reference: Archive and entry prefix to enumerate.
            policy: Filter policy (or plain predicate) applied to each candidate.
            suffix: Class file suffix. Can also be set via CLASSPATHSCAN_SUFFIX.

        Raises:
            ConstructionError: If the entry directory cannot be read.
        """
        self._reference = reference
        self._policy = as_policy(policy)
        self._suffix = _parse_suffix(suffix)

        try:
            self._entries = tuple(reference.archive.entries())
        except (OSError, ValueError, zipfile.BadZipFile) as exc:
            raise ConstructionError(
                f"Cannot read entries of {reference.archive.location}: {exc}"
            ) from exc

    @property
    def reference(self) -> ArchiveReference:
        return self._reference

    def __iter__(self) -> Iterator[Resource]:
        archive = self._reference.archive
        is_candidate = _class_files_beneath(self._reference.entry_prefix, self._suffix)

        names = (entry.name for entry in self._entries if is_candidate(entry))
        located = ((name, archive.location.append(name)) for name in names)
        included = ((name, loc) for name, loc in located if self._policy.include(loc))
        return (Resource(loc, _entry_opener(archive, name)) for name, loc in included)

    def __repr__(self) -> str:
        return (
            f"ArchiveSource({self._reference.archive.location.uri!r}, "
            f"prefix={self._reference.entry_prefix!r})"
        )


def _is_archive_file(path: Path, suffix: str | None) -> bool:
    """Whether a regular file is scanned as an archive.

    Zip files are archives. Other files are archives too, so that a corrupt
    jar fails loudly, except those named like a class file.
    """
    if zipfile.is_zipfile(path):
        return True
    return not path.name.endswith(_parse_suffix(suffix))


class ClassFileSource:
    """Class files of a single classpath entry, whatever backs it.

    Accepted entry descriptions:
    - a directory path (or a path that does not exist): walked as a directory
    - a regular file path: opened as a zip archive, unless it is a single
      class file that is not a zip archive, which is its own result
    - a ``file:`` URI: as the corresponding path
    - a ``jar:`` URI such as ``jar:file:/app.jar!/com/acme/``: the archive,
      scoped to the entry prefix after the last ``!/``; intermediate ``!/``
      parts name nested archives
    - a Location holding either URI form
    - an ArchiveReference, an ArchiveAccess or an open ZipFile (borrowed)
    """

    def __init__(
        self,
        entry: ClasspathEntry,
        policy: PolicyLike = None,
        suffix: str | None = None,
    ) -> None:
        """Resolve an entry description to a directory or archive source.

        Raises:
            ConstructionError: If the entry's candidates cannot be enumerated.
            ValueError: If a URI entry uses an unsupported scheme.
            TypeError: If the entry description has an unsupported type.
        """
        self._entry = entry
        self._source = self._resolve(entry, as_policy(policy), suffix)

    @staticmethod
    def _resolve(
        entry: ClasspathEntry, policy: FilterPolicy, suffix: str | None
    ) -> DirectorySource | ArchiveSource:
        if isinstance(entry, ArchiveReference):
            return ArchiveSource(entry, policy, suffix)
        if isinstance(entry, zipfile.ZipFile):
            return ArchiveSource(ArchiveReference(ZipArchive(entry)), policy, suffix)
        if isinstance(entry, Location):
            entry = entry.uri

        if isinstance(entry, str):
            if entry.startswith("jar:"):
                return ArchiveSource(open_archive_uri(entry), policy, suffix)
            if entry.startswith("file:"):
                entry = file_uri_to_path(entry)

        if isinstance(entry, (str, os.PathLike)):
            path = Path(entry)
            if path.is_file() and _is_archive_file(path, suffix):
                return ArchiveSource(ArchiveReference(ZipArchive(path)), policy, suffix)
            return DirectorySource(path, policy, suffix)

        if isinstance(entry, ArchiveAccess):
            return ArchiveSource(ArchiveReference(entry), policy, suffix)

        raise TypeError(f"Unsupported classpath entry: {entry!r}")

    @property
    def entry(self) -> ClasspathEntry:
        return self._entry

    @property
    def source(self) -> DirectorySource | ArchiveSource:
        """The directory or archive source backing this entry."""
        return self._source

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._source)

    def __repr__(self) -> str:
        return f"ClassFileSource({self._source!r})"


def _entry_text(entry: ClasspathEntry) -> str:
    """Text of an entry description, as matched by exclude patterns."""
    if isinstance(entry, Location):
        return entry.uri
    if isinstance(entry, (str, os.PathLike)):
        return os.fspath(entry)
    if isinstance(entry, ArchiveReference):
        return entry.archive.location.uri
    if isinstance(entry, zipfile.ZipFile):
        return Location.of_archive(entry.filename).uri if entry.filename else ""
    if isinstance(entry, ArchiveAccess):
        return entry.location.uri
    raise TypeError(f"Unsupported classpath entry: {entry!r}")


def _entry_exists(entry: ClasspathEntry) -> bool:
    # Already opened archives exist by construction
    if isinstance(entry, (ArchiveReference, ArchiveAccess, zipfile.ZipFile)):
        return True
    entry = _entry_text(entry)
    if entry.startswith("jar:"):
        path, _, _ = split_archive_uri(entry)
        return path.exists()
    if entry.startswith("file:"):
        return file_uri_to_path(entry).exists()
    return Path(entry).exists()


class ClassPath:
    """Class files of every entry of a classpath, in classpath order.

    Resources whose location was already produced by an earlier entry are
    skipped.
    """

    def __init__(
        self,
        entries: str | Iterable[ClasspathEntry] | None = None,
        policy: PolicyLike = None,
        suffix: str | None = None,
        exclude: Iterable[str] | None = None,
    ) -> None:
        """Initialize a classpath.

        Args:
            entries: Entries as a list or an os.pathsep-separated string.
                Defaults to the CLASSPATH environment variable.
            policy: Filter policy (or plain predicate) applied to each candidate.
            suffix: Class file suffix. Can also be set via CLASSPATHSCAN_SUFFIX.
            exclude: fnmatch patterns of entries to skip. Merged with the
                comma-separated CLASSPATHSCAN_EXCLUDE environment variable.
        """
        self._entries = self._parse_entries(entries)
        self._exclude = self._parse_exclude(exclude)
        self._policy = as_policy(policy)
        self._suffix = _parse_suffix(suffix)

    def _parse_entries(
        self, entries: str | Iterable[ClasspathEntry] | None
    ) -> list[ClasspathEntry]:
        """Parse entries from constructor or the CLASSPATH environment variable.

        Args:
            entries: Entries from constructor.

        Returns:
            List of non-empty entries.
        """
        if entries is None:
            entries = os.environ.get("CLASSPATH", "")

        if isinstance(entries, str):
            return [entry.strip() for entry in entries.split(os.pathsep) if entry.strip()]

        return list(entries)

    def _parse_exclude(self, exclude: Iterable[str] | None) -> set[str]:
        """Parse exclude patterns from constructor and environment variable.

        Args:
            exclude: Patterns from constructor.

        Returns:
            Merged set of fnmatch patterns.
        """
        result = set(exclude) if exclude else set()

        env_exclude = os.environ.get("CLASSPATHSCAN_EXCLUDE", "")
        if env_exclude:
            result.update(
                pattern.strip() for pattern in env_exclude.split(",") if pattern.strip()
            )

        return result

    def _is_excluded(self, entry: ClasspathEntry) -> bool:
        text = _entry_text(entry)
        return any(fnmatch.fnmatch(text, pattern) for pattern in self._exclude)

    @property
    def entries(self) -> list[ClasspathEntry]:
        """Classpath entries that are not excluded."""
        return [entry for entry in self._entries if not self._is_excluded(entry)]

    def sources(self) -> Iterator[ClassFileSource]:
        """Create one source per existing entry, lazily and in order.

        Missing entries emit MissingClasspathEntryWarning, attributed to the
        code advancing this generator (ClassPath.__iter__ when the classpath
        itself is iterated).

        Yields:
            ClassFileSource objects.

        Raises:
            ConstructionError: If an existing entry cannot be enumerated.
        """
        for entry in self.entries:
            if not _entry_exists(entry):
                warnings.warn(
                    f"Classpath entry '{_entry_text(entry)}' does not exist and is ignored.",
                    MissingClasspathEntryWarning,
                    stacklevel=2,
                )
                continue
            logger.debug("Scanning classpath entry %s", _entry_text(entry))
            yield ClassFileSource(entry, self._policy, self._suffix)

    def __iter__(self) -> Iterator[Resource]:
        seen: set[Location] = set()
        for source in self.sources():
            for resource in source:
                if resource.location in seen:
                    continue
                seen.add(resource.location)
                yield resource
