"""Resume, save, and archive conversations in the snapshot folder."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from . import codec, fmt
from .history import (
    ArtifactKind,
    history_dir,
    latest,
    scan_artifacts,
    write_artifact,
)
from .messages import Message, Role, system_message
from .report import SnapshotDecodeError

logger = logging.getLogger(__name__)

QUOTA_EXIT_CODE = 1


def new_conversation(system_prompt: str) -> list[Message]:
    return [system_message(system_prompt)]


# -- Loading -----------------------------------------------------------------


@dataclass
class Loaded:
    messages: list[Message]
    path: Path


@dataclass
class LoadFailed:
    reason: str
    path: Path | None = None


@dataclass
class NothingToLoad:
    pass


def _read_latest(
    directory: Path, include_pre_clear: bool
) -> Loaded | LoadFailed | NothingToLoad:
    """Find and decode the newest resumable snapshot."""
    try:
        if not directory.is_dir():
            return NothingToLoad()
        candidate = latest(
            scan_artifacts(directory), include_pre_clear=include_pre_clear
        )
    except OSError as e:
        return LoadFailed(f"cannot list {directory}: {e}")
    if candidate is None:
        return NothingToLoad()

    try:
        text = candidate.path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return LoadFailed(f"cannot read {candidate.name}: {e}", candidate.path)

    try:
        messages = codec.decode(text)
    except SnapshotDecodeError as e:
        return LoadFailed(f"{candidate.name}: {e}", candidate.path)
    if not messages:
        return LoadFailed(f"{candidate.name}: snapshot is empty", candidate.path)

    return Loaded(messages, candidate.path)


def reconcile_system_prompt(
    messages: list[Message], system_prompt: str
) -> list[Message]:
    """Return a copy whose first message is the current system prompt.

    The persisted system prompt is always replaced, never kept.
    """
    reconciled = list(messages)
    if reconciled and reconciled[0].role == Role.SYSTEM:
        reconciled[0] = system_message(system_prompt)
    else:
        reconciled.insert(0, system_message(system_prompt))
    return reconciled


def load_latest_conversation(
    system_prompt: str,
    *,
    directory: Path | None = None,
    include_pre_clear: bool = True,
    show: bool = True,
) -> list[Message]:
    """Resume the most recent conversation snapshot.

    Never raises: any failure to list, read, or decode falls back to a
    conversation holding only the system prompt.
    """
    directory = directory or history_dir()
    result = _read_latest(directory, include_pre_clear)

    if isinstance(result, NothingToLoad):
        return new_conversation(system_prompt)
    if isinstance(result, LoadFailed):
        logger.debug("snapshot load failed: %s", result.reason)
        fmt.warning(f"Failed to load conversation history: {result.reason}")
        return new_conversation(system_prompt)

    messages = reconcile_system_prompt(result.messages, system_prompt)
    if show:
        fmt.snapshot_loaded(result.path.name, len(messages))
        fmt.conversation_transcript(messages)
    return messages


# -- Writing -----------------------------------------------------------------


@dataclass
class QuotaExceeded:
    """Returned by save_quota_exceeded_snapshot: the caller must exit now."""

    path: Path
    message: str
    exit_code: int = QUOTA_EXIT_CODE


def save_snapshot(
    messages: list[Message], *, directory: Path | None = None, clock=None
) -> Path:
    """Persist the conversation after a turn. OSError propagates."""
    return write_artifact(
        ArtifactKind.CONVERSATION,
        codec.encode(messages),
        directory=directory,
        clock=clock,
    )


def save_pre_clear_snapshot(
    messages: list[Message], *, directory: Path | None = None, clock=None
) -> Path | None:
    """Persist the conversation before /clear. No-op for a system-only history."""
    if len(messages) <= 1:
        return None
    path = write_artifact(
        ArtifactKind.PRE_CLEAR,
        codec.encode(messages),
        directory=directory,
        clock=clock,
    )
    fmt.snapshot_saved("Conversation saved before clearing to", path)
    return path


def save_quota_exceeded_snapshot(
    messages: list[Message],
    error_message: str,
    *,
    directory: Path | None = None,
    clock=None,
) -> QuotaExceeded:
    """Alert the operator and persist the conversation; the session must end.

    Always writes, whatever the history length. The returned signal tells
    the top-level caller to exit with ``exit_code``.
    """
    fmt.quota_alert(error_message)
    path = write_artifact(
        ArtifactKind.QUOTA_EXCEEDED,
        codec.encode(messages),
        directory=directory,
        clock=clock,
    )
    return QuotaExceeded(path, error_message)


def _write_json(kind: ArtifactKind, payload, directory: Path | None, clock) -> Path:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str) + "\n"
    return write_artifact(kind, text, directory=directory, clock=clock)


def log_request(payload: dict, *, directory: Path | None = None, clock=None) -> Path:
    return _write_json(ArtifactKind.REQUEST, payload, directory, clock)


def log_response(payload, *, directory: Path | None = None, clock=None) -> Path:
    return _write_json(ArtifactKind.RESPONSE, payload, directory, clock)


def save_session_report(
    report: dict, *, directory: Path | None = None, clock=None
) -> Path:
    return _write_json(ArtifactKind.SESSION_FINAL, report, directory, clock)
