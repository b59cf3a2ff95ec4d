"""Tests for the snapshot folder: location, naming, classification, and writes."""

import os
from pathlib import Path

import pytest

from blueberry.history import (
    ArtifactKind,
    artifact_name,
    classify,
    ensure_history_dir,
    history_dir,
    latest,
    resumable,
    scan_artifacts,
    write_artifact,
)


def _touch(directory: Path, name: str, mtime: float, text: str = "[]") -> Path:
    path = directory / name
    path.write_text(text, encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


# ---------------------------------------------------------------------------
# Storage location
# ---------------------------------------------------------------------------


class TestStorageLocation:
    def test_under_home(self, _isolate_home):
        assert history_dir() == _isolate_home / ".bb-history"

    def test_lookup_does_not_create(self):
        history_dir()
        assert not history_dir().exists()

    def test_ensure_creates_and_is_idempotent(self):
        d = ensure_history_dir()
        assert d.is_dir()
        assert ensure_history_dir() == d

    def test_ensure_with_explicit_directory(self, tmp_path):
        target = tmp_path / "nested" / "snapshots"
        assert ensure_history_dir(target) == target
        assert target.is_dir()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    @pytest.mark.parametrize(
        "name, kind",
        [
            ("bb-1700000000000.json", ArtifactKind.CONVERSATION),
            ("bb-1700000000000-2.json", ArtifactKind.CONVERSATION),
            ("bb-pre-clear-1700000000000.json", ArtifactKind.PRE_CLEAR),
            ("bb-quota-exceeded-500.json", ArtifactKind.QUOTA_EXCEEDED),
            ("bb-req-42.json", ArtifactKind.REQUEST),
            ("bb-resp-42.json", ArtifactKind.RESPONSE),
            ("bb-session-final-42.json", ArtifactKind.SESSION_FINAL),
            ("BB-Quota-Exceeded-1.JSON", ArtifactKind.QUOTA_EXCEEDED),
            ("BB-REQ-1.json", ArtifactKind.REQUEST),
            ("bb-notes.json", ArtifactKind.CONVERSATION),
        ],
    )
    def test_kinds(self, name, kind):
        assert classify(name) is kind

    @pytest.mark.parametrize(
        "name",
        ["notes.txt", "bb-100.txt", "xbb-100.json", "history.json", ".bb-100.json"],
    )
    def test_non_artifacts_ignored(self, name):
        assert classify(name) is None

    def test_diagnostic_kinds(self):
        assert ArtifactKind.QUOTA_EXCEEDED.is_diagnostic
        assert ArtifactKind.REQUEST.is_diagnostic
        assert ArtifactKind.RESPONSE.is_diagnostic
        assert ArtifactKind.SESSION_FINAL.is_diagnostic
        assert not ArtifactKind.CONVERSATION.is_diagnostic
        assert not ArtifactKind.PRE_CLEAR.is_diagnostic

    def test_names_encode_kind(self):
        for kind in ArtifactKind:
            assert classify(artifact_name(kind, 123)) is kind
            assert classify(artifact_name(kind, 123, 4)) is kind


# ---------------------------------------------------------------------------
# Scanning and selection
# ---------------------------------------------------------------------------


class TestScanAndSelect:
    def test_scan_ignores_unrelated_files(self, tmp_path):
        _touch(tmp_path, "bb-100.json", 100)
        _touch(tmp_path, "readme.md", 200)
        (tmp_path / "bb-dir.json").mkdir()
        names = [a.name for a in scan_artifacts(tmp_path)]
        assert names == ["bb-100.json"]

    def test_scan_parses_timestamp_and_suffix(self, tmp_path):
        _touch(tmp_path, "bb-pre-clear-123-4.json", 100)
        (artifact,) = scan_artifacts(tmp_path)
        assert artifact.kind is ArtifactKind.PRE_CLEAR
        assert artifact.timestamp == 123
        assert artifact.seq == 4

    def test_diagnostics_never_selected_even_if_newest(self, tmp_path):
        _touch(tmp_path, "bb-100.json", 100)
        _touch(tmp_path, "bb-quota-exceeded-500.json", 500)
        _touch(tmp_path, "bb-req-600.json", 600)
        _touch(tmp_path, "bb-resp-700.json", 700)
        _touch(tmp_path, "bb-session-final-800.json", 800)
        assert latest(scan_artifacts(tmp_path)).name == "bb-100.json"

    def test_newest_by_mtime(self, tmp_path):
        _touch(tmp_path, "bb-900.json", 100)
        _touch(tmp_path, "bb-100.json", 200)
        assert latest(scan_artifacts(tmp_path)).name == "bb-100.json"

    def test_mtime_tie_broken_by_name_stamp(self, tmp_path):
        _touch(tmp_path, "bb-100.json", 100)
        _touch(tmp_path, "bb-100-1.json", 100)
        _touch(tmp_path, "bb-99.json", 100)
        order = [a.name for a in resumable(scan_artifacts(tmp_path))]
        assert order == ["bb-100-1.json", "bb-100.json", "bb-99.json"]

    def test_pre_clear_resumable_by_default(self, tmp_path):
        _touch(tmp_path, "bb-100.json", 100)
        _touch(tmp_path, "bb-pre-clear-200.json", 200)
        assert latest(scan_artifacts(tmp_path)).name == "bb-pre-clear-200.json"

    def test_pre_clear_excluded_on_request(self, tmp_path):
        _touch(tmp_path, "bb-100.json", 100)
        _touch(tmp_path, "bb-pre-clear-200.json", 200)
        chosen = latest(scan_artifacts(tmp_path), include_pre_clear=False)
        assert chosen.name == "bb-100.json"

    def test_no_candidates(self, tmp_path):
        _touch(tmp_path, "bb-quota-exceeded-1.json", 100)
        assert latest(scan_artifacts(tmp_path)) is None
        assert latest([]) is None


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


class TestWriteArtifact:
    def test_creates_directory(self, tmp_path):
        target = tmp_path / "new"
        path = write_artifact(
            ArtifactKind.CONVERSATION, "[]", directory=target, clock=lambda: 5
        )
        assert path == target / "bb-5.json"
        assert path.read_text() == "[]"

    def test_defaults_to_home_folder(self, _isolate_home):
        path = write_artifact(ArtifactKind.REQUEST, "{}", clock=lambda: 7)
        assert path == _isolate_home / ".bb-history" / "bb-req-7.json"

    def test_same_millisecond_does_not_overwrite(self, tmp_path):
        clock = lambda: 1000  # noqa: E731
        first = write_artifact(
            ArtifactKind.CONVERSATION, "first", directory=tmp_path, clock=clock
        )
        second = write_artifact(
            ArtifactKind.CONVERSATION, "second", directory=tmp_path, clock=clock
        )
        third = write_artifact(
            ArtifactKind.CONVERSATION, "third", directory=tmp_path, clock=clock
        )
        assert first.name == "bb-1000.json"
        assert second.name == "bb-1000-1.json"
        assert third.name == "bb-1000-2.json"
        assert first.read_text() == "first"
        assert second.read_text() == "second"
        assert third.read_text() == "third"

    def test_kinds_share_millisecond_without_suffix(self, tmp_path):
        clock = lambda: 1000  # noqa: E731
        a = write_artifact(ArtifactKind.CONVERSATION, "", directory=tmp_path, clock=clock)
        b = write_artifact(ArtifactKind.PRE_CLEAR, "", directory=tmp_path, clock=clock)
        assert a.name == "bb-1000.json"
        assert b.name == "bb-pre-clear-1000.json"

    def test_wall_clock_names(self, tmp_path):
        path = write_artifact(ArtifactKind.CONVERSATION, "[]", directory=tmp_path)
        artifact = scan_artifacts(tmp_path)[0]
        assert artifact.path == path
        assert artifact.timestamp > 1_600_000_000_000
