"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Turn structure ----------------------------------------------------------


def llm_timing(elapsed: float, finish_reason: str) -> None:
    style = "green" if finish_reason == "stop" else "yellow"
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style=style)
    text.append(f"  finish_reason={escape(str(finish_reason))}", style=style)
    _console.print(text)


def llm_spinner(label: str = "Waiting for LLM"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def turn_usage(prompt_tokens: int, completion_tokens: int, *, estimated: bool) -> None:
    approx = "~" if estimated else ""
    _console.print(
        Text(
            f"  tokens: {approx}{prompt_tokens} in, {approx}{completion_tokens} out",
            style="dim",
        )
    )


# -- Snapshots ---------------------------------------------------------------


def snapshot_loaded(name: str, count: int) -> None:
    line = Text()
    line.append("  \u21bb Loaded conversation snapshot from ", style="cyan")
    line.append(f"'{name}'", style="bold cyan")
    line.append(f" ({count} messages).", style="cyan")
    _console.print(line)


def snapshot_saved(label: str, path) -> None:
    line = Text()
    line.append(f"  \u2713 {label} ", style="green")
    line.append(str(path), style="bold green")
    _console.print(line)


def quota_alert(message: str) -> None:
    _console.print()
    _console.print(
        Text("\U0001f6a8 DAILY TOKEN QUOTA EXCEEDED \U0001f6a8", style="bold red")
    )
    _console.print(Text(f"Message: {message}", style="red"))


_ROLE_LABELS = {
    "user": ("\U0001f464 USER: ", "bold green"),
    "assistant": ("\U0001f916 ASSISTANT: ", "bold blue"),
    "tool": ("\U0001f527 TOOL: ", "bold yellow"),
}


def conversation_transcript(messages: list) -> None:
    """Print a loaded history for the operator, skipping the system prompt."""
    _console.print(Rule("LOADED CONVERSATION HISTORY", style="cyan"))
    for i, msg in enumerate(messages):
        role = msg.role.value
        if i == 0 and role == "system":
            continue
        label, style = _ROLE_LABELS.get(role, (f"{role.upper()}: ", "bold"))
        lines = msg.content.split("\n") if msg.content else []

        header = Text()
        header.append(label, style=style)
        if len(lines) == 1:
            header.append(lines[0])
            _console.print(header)
            continue
        _console.print(header)
        for line in lines:
            _console.print(Text(f"  {line}"))
    _console.print(Rule("END OF LOADED CONVERSATION", style="cyan"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner() -> None:
    _console.print(Text("Interactive mode. Type /exit or Ctrl-D to quit.", style="dim"))
