"""Pytest configuration and fixtures."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from classpathscan.types import Location


class RecordingPolicy:
    """FilterPolicy that records every location it is asked about."""

    def __init__(self, include: bool = True) -> None:
        """Initialize recording policy.

        Args:
            include: Answer returned for every location.
        """
        self.seen: list[Location] = []
        self._include = include

    def include(self, location: Location) -> bool:
        """Record the location and return the configured answer."""
        self.seen.append(location)
        return self._include


class RejectAllPolicy:
    """FilterPolicy rejecting every candidate."""

    def include(self, location: Location) -> bool:
        """Reject."""
        return False


def create_test_jar(path: Path, entries: dict[str, bytes]) -> Path:
    """Create a zip archive on disk.

    Args:
        path: Archive file to write.
        entries: Mapping of entry names to contents. Names ending in "/"
            become directory entries.

    Returns:
        The archive path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def create_test_classes(root: Path, files: dict[str, bytes]) -> list[Path]:
    """Create files below a directory.

    Args:
        root: Directory to create files in.
        files: Mapping of relative paths to contents.

    Returns:
        The created file paths.
    """
    paths = []
    for relative, data in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        paths.append(path)
    return paths


@pytest.fixture
def class_dir(tmp_path: Path) -> Path:
    """Create a directory tree holding three class files and two other files."""
    root = tmp_path / "classes"
    create_test_classes(
        root,
        {
            "com/acme/App.class": b"\xca\xfe\xba\xbeApp",
            "com/acme/util/Strings.class": b"\xca\xfe\xba\xbeStrings",
            "Main.class": b"\xca\xfe\xba\xbeMain",
            "com/acme/App.java": b"class App {}",
            "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\n",
        },
    )
    return root


@pytest.fixture
def sample_jar(tmp_path: Path) -> Path:
    """Create a jar with class files below a/ and elsewhere."""
    return create_test_jar(
        tmp_path / "sample.jar",
        {
            "a/": b"",
            "a/B.class": b"\xca\xfe\xba\xbeB",
            "a/C.txt": b"not a class",
            "a/b/D.class": b"\xca\xfe\xba\xbeD",
            "x/E.class": b"\xca\xfe\xba\xbeE",
        },
    )


@pytest.fixture
def nested_jar(tmp_path: Path, sample_jar: Path) -> Path:
    """Create a jar containing sample.jar as lib/inner.jar."""
    return create_test_jar(
        tmp_path / "outer.jar",
        {
            "lib/inner.jar": sample_jar.read_bytes(),
            "Outer.class": b"\xca\xfe\xba\xbeOuter",
        },
    )
