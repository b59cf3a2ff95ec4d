"""Snapshot folder layout: location, artifact naming, and classification.

Every session artifact lives flat in ``~/.bb-history``. The kind of an artifact
is encoded in its file name so that startup only needs a directory listing:

    bb-<ms>.json                  conversation snapshot after a turn
    bb-pre-clear-<ms>.json        conversation saved before /clear
    bb-quota-exceeded-<ms>.json   conversation saved when the quota ran out
    bb-req-<ms>.json              raw request log
    bb-resp-<ms>.json             raw response log
    bb-session-final-<ms>.json    end-of-session report

A ``-<n>`` suffix before ``.json`` disambiguates writes within one millisecond.
"""

import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

HISTORY_DIRNAME = ".bb-history"
FILE_PREFIX = "bb-"
FILE_SUFFIX = ".json"


class ArtifactKind(Enum):
    CONVERSATION = ""
    PRE_CLEAR = "pre-clear-"
    QUOTA_EXCEEDED = "quota-exceeded-"
    REQUEST = "req-"
    RESPONSE = "resp-"
    SESSION_FINAL = "session-final-"

    @property
    def marker(self) -> str:
        """File name prefix for this kind, e.g. ``bb-pre-clear-``."""
        return FILE_PREFIX + self.value

    @property
    def is_diagnostic(self) -> bool:
        return self in _DIAGNOSTIC_KINDS


# Checked in this order; the first matching marker wins.
_CLASSIFY_ORDER = (
    ArtifactKind.QUOTA_EXCEEDED,
    ArtifactKind.REQUEST,
    ArtifactKind.RESPONSE,
    ArtifactKind.SESSION_FINAL,
    ArtifactKind.PRE_CLEAR,
)

_DIAGNOSTIC_KINDS = frozenset(
    {
        ArtifactKind.QUOTA_EXCEEDED,
        ArtifactKind.REQUEST,
        ArtifactKind.RESPONSE,
        ArtifactKind.SESSION_FINAL,
    }
)

_STAMP_RE = re.compile(r"(\d+)(?:-(\d+))?$")


def history_dir() -> Path:
    """Return the snapshot folder. Does not create it."""
    return Path.home() / HISTORY_DIRNAME


def ensure_history_dir(directory: Path | None = None) -> Path:
    directory = directory or history_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def is_artifact_name(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith(FILE_PREFIX) and lowered.endswith(FILE_SUFFIX)


def classify(name: str) -> ArtifactKind | None:
    """Map a file name to its artifact kind, or None if it is not an artifact."""
    if not is_artifact_name(name):
        return None
    lowered = name.lower()
    for kind in _CLASSIFY_ORDER:
        if lowered.startswith(kind.marker):
            return kind
    return ArtifactKind.CONVERSATION


def _parse_stamp(name: str, kind: ArtifactKind) -> tuple[int, int]:
    """Return (timestamp, collision suffix); (-1, -1) for hand-named files."""
    stem = name[len(kind.marker) : -len(FILE_SUFFIX)]
    m = _STAMP_RE.fullmatch(stem)
    if not m:
        return -1, -1
    return int(m.group(1)), int(m.group(2) or 0)


@dataclass(frozen=True)
class Artifact:
    path: Path
    kind: ArtifactKind
    mtime: float
    timestamp: int
    seq: int

    @property
    def name(self) -> str:
        return self.path.name

    def recency_key(self) -> tuple[float, int, int, str]:
        return (self.mtime, self.timestamp, self.seq, self.name)


def scan_artifacts(directory: Path) -> list[Artifact]:
    """List every session artifact in ``directory``. Other files are ignored."""
    artifacts = []
    with os.scandir(directory) as entries:
        for entry in entries:
            kind = classify(entry.name)
            if kind is None or not entry.is_file():
                continue
            timestamp, seq = _parse_stamp(entry.name, kind)
            artifacts.append(
                Artifact(
                    path=Path(entry.path),
                    kind=kind,
                    mtime=entry.stat().st_mtime,
                    timestamp=timestamp,
                    seq=seq,
                )
            )
    return artifacts


def resumable(
    artifacts: list[Artifact], *, include_pre_clear: bool = True
) -> list[Artifact]:
    """Filter to conversation snapshots, newest first."""
    allowed = {ArtifactKind.CONVERSATION}
    if include_pre_clear:
        allowed.add(ArtifactKind.PRE_CLEAR)
    candidates = [a for a in artifacts if a.kind in allowed]
    candidates.sort(key=Artifact.recency_key, reverse=True)
    return candidates


def latest(
    artifacts: list[Artifact], *, include_pre_clear: bool = True
) -> Artifact | None:
    candidates = resumable(artifacts, include_pre_clear=include_pre_clear)
    return candidates[0] if candidates else None


def artifact_name(kind: ArtifactKind, timestamp: int, seq: int = 0) -> str:
    stamp = f"{timestamp}-{seq}" if seq else str(timestamp)
    return f"{kind.marker}{stamp}{FILE_SUFFIX}"


def write_artifact(
    kind: ArtifactKind,
    text: str,
    *,
    directory: Path | None = None,
    clock=None,
) -> Path:
    """Write ``text`` to a fresh artifact file and return its path.

    Creates the folder if needed. Never overwrites: if the millisecond name is
    already taken, a numeric suffix is appended until the exclusive create
    succeeds. OSError from the filesystem propagates to the caller.
    """
    directory = ensure_history_dir(directory)
    timestamp = (clock or now_ms)()
    seq = 0
    while True:
        path = directory / artifact_name(kind, timestamp, seq)
        try:
            with path.open("x", encoding="utf-8") as f:
                f.write(text)
        except FileExistsError:
            seq += 1
            continue
        return path
