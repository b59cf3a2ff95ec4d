import argparse
import re
import sys
import time
from pathlib import Path

from importlib import metadata

import tiktoken

from . import fmt
from .config import _UNSET, apply_config_to_args, generate_config, load_config
from .conversation import (
    QuotaExceeded,
    load_latest_conversation,
    log_request,
    log_response,
    new_conversation,
    save_pre_clear_snapshot,
    save_quota_exceeded_snapshot,
    save_session_report,
    save_snapshot,
)
from .messages import Message, Role, from_llm_message, to_llm_messages
from .report import AgentError, QuotaExceededError, ReportCollector

DEFAULT_SYSTEM_PROMPT = (
    "You are Blueberry, a concise and careful assistant running in a terminal. "
    "Answer directly, and say so when you are unsure."
)

_encoder = tiktoken.get_encoding("cl100k_base")

_QUOTA_RE = re.compile(
    r"quota|insufficient_quota|tokens per day|daily (token )?limit",
    re.IGNORECASE,
)


def estimate_tokens(messages: list) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        content = m.content if isinstance(m, Message) else m.get("content") or ""
        total += len(_encoder.encode(content))
    # Per-message overhead (role, separators): ~4 tokens each
    total += 4 * len(messages)
    return total


def _provider_args(provider, base_url, model_id, api_key):
    """Return (model string, extra completion kwargs) for a provider."""
    if provider == "lmstudio":
        base = base_url or "http://127.0.0.1:1234"
        return f"openai/{model_id}", {"api_base": f"{base}/v1", "api_key": "lm-studio"}
    if provider == "openai":
        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["api_base"] = base_url
        return f"openai/{model_id.removeprefix('openai/')}", kwargs
    if provider == "openrouter":
        bare_id = (
            model_id[len("openrouter/") :]
            if model_id.startswith("openrouter/openrouter/")
            else model_id
        )
        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["api_base"] = base_url
        return f"openrouter/{bare_id}", kwargs
    raise AgentError(f"unknown provider {provider!r}")


def _log_diagnostic(writer, payload) -> None:
    """Write a raw request/response log; failures only warn."""
    try:
        writer(payload)
    except OSError as e:
        fmt.warning(f"failed to write request log: {e}")


def call_llm(
    base_url,
    model_id,
    messages,
    max_output_tokens,
    temperature,
    top_p,
    seed,
    verbose,
    *,
    provider="lmstudio",
    api_key=None,
    log_requests=False,
):
    """Call LiteLLM with the appropriate provider.

    Returns (message, finish_reason, usage) where usage is the provider's
    usage object or None.
    """
    import litellm

    litellm.suppress_debug_info = True

    model_str, kwargs = _provider_args(provider, base_url, model_id, api_key)

    if verbose:
        extras = []
        if temperature is not None:
            extras.append(f"temperature={temperature}")
        if top_p is not None:
            extras.append(f"top_p={top_p}")
        if seed is not None:
            extras.append(f"seed={seed}")
        extra_str = ", " + ", ".join(extras) if extras else ""
        fmt.info(
            f"Calling model {model_str} with max_tokens={max_output_tokens}{extra_str}"
        )

    completion_kwargs = dict(
        model=model_str,
        messages=to_llm_messages(messages),
        max_tokens=max_output_tokens,
        **kwargs,
    )
    for key, val in [("temperature", temperature), ("top_p", top_p), ("seed", seed)]:
        if val is not None:
            completion_kwargs[key] = val

    if log_requests:
        _log_diagnostic(
            log_request, {k: v for k, v in completion_kwargs.items() if k != "api_key"}
        )

    try:
        response = litellm.completion(**completion_kwargs)
    except litellm.RateLimitError as e:
        if _QUOTA_RE.search(str(e)):
            raise QuotaExceededError(str(e))
        raise AgentError(f"LLM call failed: {e}")
    except Exception as e:
        raise AgentError(f"LLM call failed: {e}")

    if log_requests:
        _log_diagnostic(log_response, response.model_dump())

    choice = response.choices[0]
    return choice.message, choice.finish_reason, getattr(response, "usage", None)


def run_turn(
    messages: list[Message],
    *,
    api_base: str | None,
    model_id: str,
    max_output_tokens: int,
    temperature: float | None,
    top_p: float,
    seed: int | None,
    verbose: bool,
    llm_kwargs: dict,
    report: ReportCollector | None = None,
    turn: int = 1,
) -> str:
    """Ask the model for the next assistant message.

    Appends the reply to `messages` in place and returns its text.
    QuotaExceededError and AgentError propagate.
    """
    prompt_est = estimate_tokens(messages)

    t0 = time.monotonic()
    if verbose:
        with fmt.llm_spinner():
            msg, finish_reason, usage = call_llm(
                api_base,
                model_id,
                messages,
                max_output_tokens,
                temperature,
                top_p,
                seed,
                verbose,
                **llm_kwargs,
            )
    else:
        msg, finish_reason, usage = call_llm(
            api_base,
            model_id,
            messages,
            max_output_tokens,
            temperature,
            top_p,
            seed,
            verbose,
            **llm_kwargs,
        )
    elapsed = time.monotonic() - t0

    reply = from_llm_message(msg)
    messages.append(reply)

    if usage is not None and getattr(usage, "prompt_tokens", None) is not None:
        prompt_tokens = usage.prompt_tokens
        completion_tokens = usage.completion_tokens or 0
        estimated = False
    else:
        prompt_tokens = prompt_est
        completion_tokens = len(_encoder.encode(reply.content))
        estimated = True

    if report:
        report.record_llm_call(
            turn,
            elapsed,
            prompt_tokens,
            completion_tokens,
            str(finish_reason),
            estimated=estimated,
        )
    if verbose:
        fmt.llm_timing(elapsed, finish_reason)
        fmt.turn_usage(prompt_tokens, completion_tokens, estimated=estimated)

    return reply.content


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="bb",
        usage="%(prog)s [options] [question]",
        description="A terminal chat agent that resumes its last conversation.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Ask a single question and exit instead of starting the REPL.",
    )
    parser.add_argument(
        "--provider",
        choices=["lmstudio", "openai", "openrouter"],
        default=_UNSET,
        help="LLM provider: lmstudio (local), openai, openrouter.",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Model identifier (required).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Server base URL (default: http://127.0.0.1:1234 for lmstudio).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens (default: 8192).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--top-p",
        type=float,
        default=_UNSET,
        help="Top-p (nucleus) sampling (default: 1.0).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=_UNSET,
        help="Random seed for reproducible outputs.",
    )
    parser.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="Replace the built-in system prompt.",
    )
    parser.add_argument(
        "--new",
        dest="no_resume",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Start a fresh conversation instead of resuming the latest snapshot.",
    )
    parser.add_argument(
        "--no-pre-clear-resume",
        dest="resume_pre_clear",
        action="store_const",
        const=False,
        default=_UNSET,
        help="Never resume from a snapshot saved by /clear.",
    )
    parser.add_argument(
        "--no-history",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Don't write conversation snapshots (per turn or before /clear) "
        "to ~/.bb-history.",
    )
    parser.add_argument(
        "--log-requests",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Write raw request/response logs to ~/.bb-history.",
    )
    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Suppress status output; only print answers.",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Handle --version first
    if args.version:
        try:
            version = metadata.version("blueberry")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    try:
        apply_config_to_args(args, load_config(Path.cwd()))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)

    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color)

    try:
        exit_code = _run_main(args, parser)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    sys.exit(exit_code)


def _run_main(args, parser) -> int:
    if not args.model:
        parser.error("--model is required (or set 'model' in a config file)")

    system_prompt = args.system_prompt or DEFAULT_SYSTEM_PROMPT
    if args.no_resume:
        messages = new_conversation(system_prompt)
    else:
        messages = load_latest_conversation(
            system_prompt,
            include_pre_clear=args.resume_pre_clear,
            show=args.verbose,
        )

    turn_kwargs = dict(
        api_base=args.base_url,
        model_id=args.model,
        max_output_tokens=args.max_output_tokens,
        temperature=args.temperature,
        top_p=args.top_p,
        seed=args.seed,
        verbose=args.verbose,
        llm_kwargs={
            "provider": args.provider,
            "api_key": args.api_key,
            "log_requests": args.log_requests,
        },
    )

    if args.question is not None:
        messages.append(Message(Role.USER, args.question))
        try:
            answer = run_turn(messages, **turn_kwargs)
        except QuotaExceededError as e:
            return save_quota_exceeded_snapshot(messages, str(e)).exit_code
        if not args.no_history:
            try:
                save_snapshot(messages)
            except OSError as e:
                fmt.warning(f"failed to save conversation snapshot: {e}")
        print(answer)
        return 0

    report = ReportCollector()
    signal = repl_loop(
        messages,
        system_prompt=system_prompt,
        no_history=args.no_history,
        report=report,
        **turn_kwargs,
    )
    if signal is not None:
        return signal.exit_code

    if not args.no_history:
        session_report = report.build_report(
            model=args.model,
            provider=args.provider,
            outcome="success",
            exit_code=0,
            messages=len(messages),
        )
        try:
            save_session_report(session_report)
        except OSError as e:
            fmt.warning(f"failed to write session report: {e}")
    return 0


# ---------------------------------------------------------------------------
# REPL command helpers
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Save a pre-clear snapshot, then reset the conversation\n"
        "  /history           Show the current conversation\n"
        "  /save              Write a conversation snapshot now\n"
        "  /exit, /quit       Exit the REPL"
    )


def _repl_clear(
    messages: list[Message],
    system_prompt: str,
    report: ReportCollector | None = None,
    no_history: bool = False,
) -> None:
    """Save the conversation, then reset it to the system prompt."""
    path = None
    if not no_history:
        try:
            path = save_pre_clear_snapshot(messages)
        except OSError as e:
            fmt.warning(f"failed to save conversation before clearing: {e}")
    if path is not None and report:
        report.record_snapshot("pre-clear", path.name)

    dropped = len(messages) - 1
    messages[:] = new_conversation(system_prompt)
    if report:
        report.record_clear(max(dropped, 0))
    fmt.info(f"context cleared ({max(dropped, 0)} messages removed)")


def _repl_save(messages: list[Message], report: ReportCollector | None = None) -> None:
    try:
        path = save_snapshot(messages)
    except OSError as e:
        fmt.warning(f"failed to save conversation snapshot: {e}")
        return
    if report:
        report.record_snapshot("conversation", path.name)
    fmt.snapshot_saved("Conversation saved to", path)


def repl_loop(
    messages: list[Message],
    *,
    system_prompt: str,
    api_base: str | None,
    model_id: str,
    max_output_tokens: int,
    temperature: float | None,
    top_p: float,
    seed: int | None,
    verbose: bool,
    llm_kwargs: dict,
    no_history: bool = False,
    report: ReportCollector | None = None,
) -> QuotaExceeded | None:
    """Interactive read-eval-print loop.

    Returns a QuotaExceeded signal if the provider quota ran out; the caller
    must then exit. Returns None when the user quits.
    """
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText

    session = PromptSession()
    prompt_text = FormattedText([("bold fg:ansigreen", "bb> ")])

    if verbose:
        fmt.repl_banner()

    turn = 0
    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        line = line.strip()
        if not line:
            continue

        # REPL commands; unknown /foo passes through as a prompt
        if line in ("/exit", "/quit"):
            break

        cmd = line.split(None, 1)[0].lower()
        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/clear":
            _repl_clear(messages, system_prompt, report, no_history)
            continue
        elif cmd == "/history":
            fmt.conversation_transcript(messages)
            continue
        elif cmd == "/save":
            _repl_save(messages, report)
            continue

        turn += 1
        messages.append(Message(Role.USER, line))
        try:
            answer = run_turn(
                messages,
                api_base=api_base,
                model_id=model_id,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                top_p=top_p,
                seed=seed,
                verbose=verbose,
                llm_kwargs=llm_kwargs,
                report=report,
                turn=turn,
            )
        except QuotaExceededError as e:
            return save_quota_exceeded_snapshot(messages, str(e))
        except KeyboardInterrupt:
            messages.pop()
            fmt.warning("interrupted, question aborted.")
            continue
        except AgentError as e:
            messages.pop()
            fmt.error(str(e))
            continue

        if not no_history:
            try:
                path = save_snapshot(messages)
            except OSError as e:
                fmt.warning(f"failed to save conversation snapshot: {e}")
            else:
                if report:
                    report.record_snapshot("conversation", path.name)
        print(answer)

    return None


if __name__ == "__main__":
    main()
