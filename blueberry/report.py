"""Error types and the end-of-session usage report."""

from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing model, bad config file, etc.)."""


class SnapshotDecodeError(AgentError):
    """Raised when a persisted conversation snapshot cannot be decoded."""


class QuotaExceededError(AgentError):
    """Raised when the provider reports that the token quota is used up."""


class ReportCollector:
    """Accumulates usage events during a session for the final session report."""

    def __init__(self):
        self.events: list[dict] = []
        self.llm_calls = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_llm_time = 0.0
        self.max_turn_seen = 0
        self.clears = 0
        self.snapshots: dict[str, int] = {}

    def record_llm_call(
        self,
        turn: int,
        duration: float,
        prompt_tokens: int,
        completion_tokens: int,
        finish_reason: str,
        *,
        estimated: bool = False,
    ):
        self.llm_calls += 1
        self.total_llm_time += duration
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        if turn > self.max_turn_seen:
            self.max_turn_seen = turn
        self.events.append(
            {
                "turn": turn,
                "type": "llm_call",
                "duration_s": round(duration, 3),
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "finish_reason": finish_reason,
                "estimated": estimated,
            }
        )

    def record_snapshot(self, kind: str, name: str):
        self.snapshots[kind] = self.snapshots.get(kind, 0) + 1
        self.events.append({"type": "snapshot", "kind": kind, "name": name})

    def record_clear(self, dropped: int):
        self.clears += 1
        self.events.append({"type": "clear", "dropped": dropped})

    def build_report(
        self,
        *,
        model: str,
        provider: str,
        outcome: str,
        exit_code: int,
        messages: int,
        error_message: str | None = None,
    ) -> dict:
        result: dict = {"outcome": outcome, "exit_code": exit_code}
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": model,
            "provider": provider,
            "result": result,
            "stats": {
                "turns": self.max_turn_seen,
                "messages": messages,
                "llm_calls": self.llm_calls,
                "prompt_tokens": self.prompt_tokens,
                "completion_tokens": self.completion_tokens,
                "total_tokens": self.prompt_tokens + self.completion_tokens,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "clears": self.clears,
                "snapshots": dict(self.snapshots),
            },
            "timeline": self.events,
        }
