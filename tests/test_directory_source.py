"""Tests for DirectorySource."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from classpathscan.core import DirectorySource
from classpathscan.types import ConstructionError, Location, OpenError
from tests.conftest import RecordingPolicy, RejectAllPolicy, create_test_classes


def test_scan_finds_all_class_files(class_dir):
    """Test that every class file becomes one resource with its own URI."""
    source = DirectorySource(class_dir)

    expected = {
        class_dir / "com/acme/App.class",
        class_dir / "com/acme/util/Strings.class",
        class_dir / "Main.class",
    }
    assert len(source) == 3
    assert {r.location for r in source} == {Location(p.as_uri()) for p in expected}
    for resource in source:
        path = next(p for p in expected if p.as_uri() == resource.location.uri)
        assert resource.read_bytes() == path.read_bytes()


def test_scan_missing_root_is_empty(tmp_path):
    """Test that a nonexistent root yields no resources and no error."""
    source = DirectorySource(tmp_path / "does-not-exist")

    assert len(source) == 0
    assert list(source) == []


def test_scan_empty_directory(tmp_path):
    """Test scanning a directory without class files."""
    assert list(DirectorySource(tmp_path)) == []


def test_suffix_match_is_exact_and_case_sensitive(tmp_path):
    """Test that only names ending exactly with .class are candidates."""
    create_test_classes(
        tmp_path,
        {
            "A.class": b"a",
            "B.CLASS": b"b",
            "C.class.bak": b"c",
            "Dclass": b"d",
        },
    )

    source = DirectorySource(tmp_path)

    assert [r.location for r in source] == [Location.of(tmp_path / "A.class")]


def test_directories_named_like_class_files_are_skipped(tmp_path):
    """Test that only regular files are candidates."""
    (tmp_path / "Weird.class").mkdir()
    create_test_classes(tmp_path, {"Weird.class/Inner.class": b"x"})

    source = DirectorySource(tmp_path)

    assert [r.location for r in source] == [Location.of(tmp_path / "Weird.class/Inner.class")]


def test_reject_all_policy_yields_nothing(class_dir):
    """Test that a rejecting policy empties the result."""
    assert list(DirectorySource(class_dir, policy=RejectAllPolicy())) == []


def test_policy_sees_each_candidate_once(class_dir):
    """Test that the policy is asked once per class file and never for others."""
    policy = RecordingPolicy()

    DirectorySource(class_dir, policy=policy)

    assert len(policy.seen) == 3
    assert all(location.uri.endswith(".class") for location in policy.seen)


def test_callable_policy(class_dir):
    """Test filtering with a plain predicate."""
    source = DirectorySource(class_dir, policy=lambda location: location.contains("/acme/"))

    assert len(source) == 2


def test_policy_errors_propagate(class_dir):
    """Test that policy failures are not wrapped."""

    def failing_policy(location):
        raise RuntimeError("policy bug")

    with pytest.raises(RuntimeError, match="policy bug"):
        DirectorySource(class_dir, policy=failing_policy)


def test_open_rereads_file(class_dir):
    """Test that every open reads the current file content."""
    source = DirectorySource(class_dir)
    resource = next(r for r in source if r.location.uri.endswith("Main.class"))

    with resource.open() as first, resource.open() as second:
        assert first.read() == second.read() == b"\xca\xfe\xba\xbeMain"

    (class_dir / "Main.class").write_bytes(b"changed")
    assert resource.read_bytes() == b"changed"


def test_open_removed_file_fails_locally(class_dir):
    """Test that a file removed after scanning fails only its own resource."""
    source = DirectorySource(class_dir)
    (class_dir / "Main.class").unlink()

    outcomes = {}
    for resource in source:
        try:
            outcomes[resource.location.uri.rsplit("/", 1)[-1]] = resource.read_bytes()
        except OpenError as exc:
            outcomes[resource.location.uri.rsplit("/", 1)[-1]] = exc

    assert isinstance(outcomes["Main.class"], OpenError)
    assert isinstance(outcomes["Main.class"].__cause__, FileNotFoundError)
    assert outcomes["App.class"] == b"\xca\xfe\xba\xbeApp"
    assert outcomes["Strings.class"] == b"\xca\xfe\xba\xbeStrings"


def test_dangling_symlink_aborts_scan(tmp_path):
    """Test that a broken link in place of a class file is fatal."""
    create_test_classes(tmp_path, {"A.class": b"a"})
    os.symlink(tmp_path / "gone.class.target", tmp_path / "Broken.class")

    with pytest.raises(ConstructionError, match="Cannot scan directory") as exc_info:
        DirectorySource(tmp_path)

    assert isinstance(exc_info.value.__cause__, FileNotFoundError)


def test_symlinked_class_file_is_included(tmp_path):
    """Test that a link to a regular file is a candidate."""
    target = tmp_path / "elsewhere" / "Target.bin"
    create_test_classes(tmp_path, {"elsewhere/Target.bin": b"linked"})
    (tmp_path / "classes").mkdir()
    os.symlink(target, tmp_path / "classes" / "Linked.class")

    source = DirectorySource(tmp_path / "classes")

    assert [r.read_bytes() for r in source] == [b"linked"]


def test_walk_error_aborts_scan(class_dir):
    """Test that an unreadable directory aborts the scan."""

    def walk_with_error(top, onerror=None):
        onerror(PermissionError(13, "Permission denied", str(top)))
        yield from ()

    with patch("classpathscan.core.os.walk", side_effect=walk_with_error):
        with pytest.raises(ConstructionError) as exc_info:
            DirectorySource(class_dir)

    assert isinstance(exc_info.value.__cause__, PermissionError)
    assert isinstance(exc_info.value, OSError)


def test_root_may_be_single_class_file(class_dir):
    """Test that a class file given as root is its own result."""
    source = DirectorySource(class_dir / "Main.class")

    assert [r.location for r in source] == [Location.of(class_dir / "Main.class")]


def test_suffix_from_environment(tmp_path):
    """Test that CLASSPATHSCAN_SUFFIX changes the candidate suffix."""
    create_test_classes(tmp_path, {"A.class": b"a", "B.bin": b"b"})

    with patch.dict(os.environ, {"CLASSPATHSCAN_SUFFIX": ".bin"}):
        source = DirectorySource(tmp_path)

    assert [r.location for r in source] == [Location.of(tmp_path / "B.bin")]


def test_suffix_argument_overrides_environment(tmp_path):
    """Test that the constructor suffix takes precedence."""
    create_test_classes(tmp_path, {"A.class": b"a", "B.bin": b"b"})

    with patch.dict(os.environ, {"CLASSPATHSCAN_SUFFIX": ".bin"}):
        source = DirectorySource(tmp_path, suffix=".class")

    assert [r.location for r in source] == [Location.of(tmp_path / "A.class")]


def test_contains(class_dir):
    """Test membership by resource or location."""
    source = DirectorySource(class_dir)
    location = Location.of(class_dir / "Main.class")

    assert location in source
    assert Location.of(class_dir / "Other.class") not in source
    assert next(iter(source)) in source
