"""classpathscan - Class file discovery over directories and archives."""

from classpathscan.archive_utils import ZipArchive, open_archive_uri
from classpathscan.core import ArchiveSource, ClassFileSource, ClassPath, DirectorySource
from classpathscan.types import (
    INCLUDE_ALL,
    AllOf,
    ArchiveAccess,
    ArchiveEntry,
    ArchiveReference,
    ClassFileSourceError,
    ConstructionError,
    FilterPolicy,
    Location,
    MissingClasspathEntryWarning,
    OpenError,
    Resource,
    as_policy,
)

__version__ = "0.1.0.dev0"

__all__ = [
    "INCLUDE_ALL",
    "AllOf",
    "ArchiveAccess",
    "ArchiveEntry",
    "ArchiveReference",
    "ArchiveSource",
    "ClassFileSource",
    "ClassFileSourceError",
    "ClassPath",
    "ConstructionError",
    "DirectorySource",
    "FilterPolicy",
    "Location",
    "MissingClasspathEntryWarning",
    "OpenError",
    "Resource",
    "ZipArchive",
    "as_policy",
    "open_archive_uri",
]
