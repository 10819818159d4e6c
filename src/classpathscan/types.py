"""Core type definitions for classpathscan."""

from __future__ import annotations

import re
import zipfile
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, NamedTuple, Protocol, runtime_checkable
from urllib.parse import quote

ARCHIVE_SCHEME = "jar:"
ARCHIVE_SEPARATOR = "!/"
CLASS_FILE_SUFFIX = ".class"


class ClassFileSourceError(OSError):
    """Base class for errors raised while discovering or opening class files."""

    pass


class ConstructionError(ClassFileSourceError):
    """Raised when the candidates of a source cannot be enumerated at all.

    This is fatal for the whole scan: an unreadable directory below the root,
    a broken link in place of a class file, or a corrupt archive all abort
    construction, and no partial result is returned.
    """

    pass


class OpenError(ClassFileSourceError):
    """Raised when one already discovered resource cannot be opened.

    The failure is local to that resource. The original exception is kept
    as ``__cause__``.
    """

    def __init__(self, location: Location, message: str) -> None:
        super().__init__(f"Cannot open {location}: {message}")
        self.location = location


class MissingClasspathEntryWarning(UserWarning):
    """Warning emitted when a classpath entry does not exist.

    The entry contributes no resources. This mirrors the way a missing
    directory root yields an empty scan rather than an error.
    """

    pass


@dataclass(frozen=True, slots=True)
class Location:
    """Canonical URI identifying a discoverable resource.

    Plain files use ``file:`` URIs. Archives and their entries use the
    ``jar:<archive-uri>!/<entry>`` form; nested archives add one more
    ``!/`` per level.
    """

    uri: str

    @classmethod
    def of(cls, target: str | Path) -> Location:
        """Create a location from a filesystem path or a URI string.

        Strings containing a scheme (``file:``, ``jar:``) are taken as URIs,
        anything else is treated as a path and made absolute.
        """
        if isinstance(target, str) and (
            target.startswith(ARCHIVE_SCHEME) or target.startswith("file:")
        ):
            return cls(target)
        return cls(Path(target).absolute().as_uri())

    @classmethod
    def of_archive(cls, target: str | Path) -> Location:
        """Create the location of an archive file (``jar:file:/...``)."""
        location = cls.of(target)
        if location.is_archive:
            return location
        return cls(ARCHIVE_SCHEME + location.uri)

    @property
    def is_archive(self) -> bool:
        """Whether this location addresses an archive or an entry inside one."""
        return self.uri.startswith(ARCHIVE_SCHEME)

    def append(self, segment: str) -> Location:
        """Return a child location with ``segment`` appended.

        Args:
            segment: Relative path (e.g. an archive entry name ``a/B.class``).

        Returns:
            New Location; this one is left unchanged.
        """
        segment = quote(segment.lstrip("/"), safe="/")
        if not self.is_archive:
            return Location(f"{self.uri.rstrip('/')}/{segment}")

        # jar:file:/x.jar -> jar:file:/x.jar!/segment
        # jar:file:/x.jar!/pkg/ -> jar:file:/x.jar!/pkg/segment
        # jar:file:/x.jar!/lib/inner.jar -> jar:file:/x.jar!/lib/inner.jar!/segment
        if ARCHIVE_SEPARATOR in self.uri and self.uri.endswith("/"):
            return Location(self.uri + segment)
        return Location(self.uri + ARCHIVE_SEPARATOR + segment)

    def as_uri(self) -> str:
        return self.uri

    def is_class_file(self, suffix: str = CLASS_FILE_SUFFIX) -> bool:
        return self.uri.endswith(quote(suffix, safe="/"))

    def contains(self, part: str) -> bool:
        """Whether the URI contains ``part`` literally."""
        return part in self.uri

    def matches(self, pattern: str | re.Pattern[str]) -> bool:
        """Whether the whole URI matches the regular expression ``pattern``."""
        return re.fullmatch(pattern, self.uri) is not None

    def __str__(self) -> str:
        return self.uri


@runtime_checkable
class FilterPolicy(Protocol):
    """Caller-supplied predicate deciding whether a candidate is included.

    Implementations must be side-effect free and safe to call concurrently.
    ``include`` is called once per candidate before a Resource is built.
    Whatever it raises is propagated to the caller unchanged.
    """

    def include(self, location: Location) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class _CallablePolicy:
    predicate: Callable[[Location], bool]

    def include(self, location: Location) -> bool:
        return self.predicate(location)


class AllOf:
    """Policy including a location only if every member policy includes it.

    Members are evaluated in order and evaluation stops at the first
    rejection.
    """

    __slots__ = ("policies",)

    def __init__(self, *policies: FilterPolicy | Callable[[Location], bool]) -> None:
        self.policies: tuple[FilterPolicy, ...] = tuple(as_policy(p) for p in policies)

    def include(self, location: Location) -> bool:
        return all(policy.include(location) for policy in self.policies)


INCLUDE_ALL: FilterPolicy = _CallablePolicy(lambda location: True)


def as_policy(
    policy: FilterPolicy | Callable[[Location], bool] | None,
) -> FilterPolicy:
    """Adapt ``policy`` to the FilterPolicy protocol.

    ``None`` means include everything; plain callables are wrapped.
    """
    if policy is None:
        return INCLUDE_ALL
    if isinstance(policy, FilterPolicy):
        return policy
    if callable(policy):
        return _CallablePolicy(policy)
    raise TypeError(f"Not a filter policy: {policy!r}")


# Failures an opener may raise that are translated into OpenError.
# KeyError: entry missing from an archive; ValueError: zip handle closed;
# zlib.error, EOFError: corrupt or truncated entry data;
# NotImplementedError: unsupported compression method.
OPEN_FAILURES = (
    OSError,
    KeyError,
    ValueError,
    EOFError,
    NotImplementedError,
    zipfile.BadZipFile,
    zlib.error,
)


@dataclass(frozen=True, slots=True, eq=False)
class Resource:
    """A discovered class file paired with a deferred, repeatable open.

    Constructing a Resource performs no I/O. Each ``open()`` call derives a
    fresh stream from the underlying storage; nothing is cached. Equality
    and hashing use the location only.
    """

    location: Location
    """Canonical location of the resource."""

    opener: Callable[[], BinaryIO] = field(repr=False)
    """Zero-argument callable returning a new binary stream."""

    def open(self) -> BinaryIO:
        """Open a new binary stream over the resource content.

        Returns:
            Binary stream; the caller is responsible for closing it.

        Raises:
            OpenError: If the underlying file or archive entry cannot be read.
        """
        try:
            return self.opener()
        except OPEN_FAILURES as exc:
            raise OpenError(self.location, str(exc) or type(exc).__name__) from exc

    def read_bytes(self) -> bytes:
        """Open the resource, read it fully and close the stream."""
        with self.open() as stream:
            return stream.read()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Resource):
            return self.location == other.location
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.location)


class ArchiveEntry(NamedTuple):
    """An entry as listed in an archive's entry directory."""

    name: str
    size: int


@runtime_checkable
class ArchiveAccess(Protocol):
    """Protocol for archive backends consumed by archive sources.

    The archive's lifetime is owned by whoever created it; sources and
    resources only hold a reference to it.
    """

    @property
    def location(self) -> Location:
        """Location of the archive itself (``jar:...``)."""
        ...

    @property
    def container(self) -> Location | None:
        """Location of the enclosing archive when this one is nested, else None."""
        ...

    def entries(self) -> list[ArchiveEntry]:
        """Read the archive's entry directory.

        Raises:
            OSError, zipfile.BadZipFile: If the directory cannot be read.
        """
        ...

    def open_entry(self, name: str) -> BinaryIO:
        """Open a new stream over one entry's bytes.

        Raises:
            KeyError: If the entry does not exist.
            OSError, ValueError: If the archive is unavailable.
        """
        ...


@dataclass(frozen=True, slots=True)
class ArchiveReference:
    """An archive plus an entry-name prefix scoping enumeration to a sub-tree.

    The archive is borrowed; resources derived from this reference fail at
    open time, not construction time, if it becomes unusable.
    """

    archive: ArchiveAccess
    """Archive backend (not owned)."""

    entry_prefix: str = ""
    """Only entries whose names start with this prefix are enumerated."""
