"""Public library API for blueberry: Session class and Result dataclass."""

import copy
from dataclasses import dataclass
from pathlib import Path

from .conversation import (
    QuotaExceeded,
    load_latest_conversation,
    new_conversation,
    save_pre_clear_snapshot,
    save_quota_exceeded_snapshot,
    save_snapshot,
)
from .messages import Message, Role
from .report import ConfigError, QuotaExceededError, ReportCollector


@dataclass
class Result:
    """Result of an ask call."""

    answer: str | None
    messages: list[Message]
    snapshot: Path | None = None
    quota_exceeded: QuotaExceeded | None = None


class Session:
    """Programmatic interface to a persisted blueberry conversation.

    Stores configuration as plain attributes. The conversation is resumed
    from the snapshot folder on the first .ask() and written back after
    every answer.
    """

    def __init__(
        self,
        *,
        provider: str = "lmstudio",
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_output_tokens: int = 8192,
        temperature: float | None = None,
        top_p: float = 1.0,
        seed: int | None = None,
        system_prompt: str | None = None,
        resume: bool = True,
        resume_pre_clear: bool = True,
        history: bool = True,
        log_requests: bool = False,
        verbose: bool = False,
        history_dir: "Path | None" = None,
    ):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.seed = seed
        self.system_prompt = system_prompt
        self.resume = resume
        self.resume_pre_clear = resume_pre_clear
        self.history = history
        self.log_requests = log_requests
        self.verbose = verbose
        self.history_dir = history_dir

        self.report = ReportCollector()
        self._messages: list[Message] | None = None
        self._turns = 0

    @property
    def system_content(self) -> str:
        from .agent import DEFAULT_SYSTEM_PROMPT

        return self.system_prompt or DEFAULT_SYSTEM_PROMPT

    @property
    def messages(self) -> list[Message]:
        """The live conversation, loaded on first access."""
        if self._messages is None:
            if self.resume:
                self._messages = load_latest_conversation(
                    self.system_content,
                    directory=self.history_dir,
                    include_pre_clear=self.resume_pre_clear,
                    show=self.verbose,
                )
            else:
                self._messages = new_conversation(self.system_content)
        return self._messages

    def ask(self, question: str) -> Result:
        """Send one user message, persist the updated conversation."""
        if not self.model:
            raise ConfigError("model is required")

        from .agent import run_turn

        messages = self.messages
        messages.append(Message(Role.USER, question))
        self._turns += 1

        try:
            answer = run_turn(
                messages,
                api_base=self.base_url,
                model_id=self.model,
                max_output_tokens=self.max_output_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                seed=self.seed,
                verbose=self.verbose,
                llm_kwargs={
                    "provider": self.provider,
                    "api_key": self.api_key,
                    "log_requests": self.log_requests,
                },
                report=self.report,
                turn=self._turns,
            )
        except QuotaExceededError as e:
            signal = save_quota_exceeded_snapshot(
                messages, str(e), directory=self.history_dir
            )
            return Result(
                answer=None,
                messages=copy.deepcopy(messages),
                snapshot=signal.path,
                quota_exceeded=signal,
            )

        snapshot = None
        if self.history:
            snapshot = save_snapshot(messages, directory=self.history_dir)
            self.report.record_snapshot("conversation", snapshot.name)

        return Result(
            answer=answer,
            messages=copy.deepcopy(messages),
            snapshot=snapshot,
        )

    def reset(self) -> Path | None:
        """Save a pre-clear snapshot and start over from the system prompt.

        Returns the snapshot path, or None when there was nothing to save.
        """
        messages = self.messages
        path = None
        if self.history:
            path = save_pre_clear_snapshot(messages, directory=self.history_dir)
        if path is not None:
            self.report.record_snapshot("pre-clear", path.name)
        self.report.record_clear(len(messages) - 1)
        self._messages = new_conversation(self.system_content)
        return path
