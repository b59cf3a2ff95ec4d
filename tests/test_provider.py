"""Tests for provider routing, quota detection, and raw request logging."""

import json
from unittest.mock import patch, MagicMock

import litellm
import pytest

from blueberry.agent import call_llm
from blueberry.history import history_dir
from blueberry.messages import Message, Role
from blueberry.report import AgentError, QuotaExceededError


def _mock_response():
    choice = MagicMock()
    choice.message = MagicMock(content="ok", tool_calls=None)
    choice.finish_reason = "stop"
    resp = MagicMock()
    resp.choices = [choice]
    resp.model_dump.return_value = {"id": "resp-1", "choices": []}
    return resp


def _call(provider="lmstudio", base_url=None, model="my-model", api_key=None, **kw):
    return call_llm(
        base_url,
        model,
        [Message(Role.SYSTEM, "s"), Message(Role.USER, "hi")],
        100,
        0.5,
        1.0,
        None,
        False,
        provider=provider,
        api_key=api_key,
        **kw,
    )


# ---------------------------------------------------------------------------
# call_llm routing
# ---------------------------------------------------------------------------


class TestCallLlmRouting:
    """Verify that call_llm passes the right model string, api_key, and api_base."""

    def test_lmstudio_routing(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call(base_url="http://localhost:1234")
        kwargs = mock_comp.call_args[1]
        assert kwargs["model"] == "openai/my-model"
        assert kwargs["api_key"] == "lm-studio"
        assert kwargs["api_base"] == "http://localhost:1234/v1"

    def test_lmstudio_default_base(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call()
        assert mock_comp.call_args[1]["api_base"] == "http://127.0.0.1:1234/v1"

    def test_openai_routing(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call(provider="openai", model="gpt-4o-mini", api_key="sk-test")
        kwargs = mock_comp.call_args[1]
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert kwargs["api_key"] == "sk-test"
        assert "api_base" not in kwargs

    def test_openrouter_routing(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call(provider="openrouter", model="openrouter/openrouter/free", api_key="k")
        assert mock_comp.call_args[1]["model"] == "openrouter/openrouter/free"

    def test_messages_sent_as_dicts(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call()
        assert mock_comp.call_args[1]["messages"] == [
            {"role": "system", "content": "s"},
            {"role": "user", "content": "hi"},
        ]

    def test_seed_omitted_when_none(self):
        with patch("litellm.completion", return_value=_mock_response()) as mock_comp:
            _call()
        assert "seed" not in mock_comp.call_args[1]
        assert mock_comp.call_args[1]["temperature"] == 0.5

    def test_unknown_provider(self):
        with pytest.raises(AgentError, match="unknown provider"):
            _call(provider="nope")

    def test_returns_message_reason_usage(self):
        resp = _mock_response()
        with patch("litellm.completion", return_value=resp):
            msg, reason, usage = _call()
        assert msg.content == "ok"
        assert reason == "stop"
        assert usage is resp.usage


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _rate_limit(message):
    return litellm.RateLimitError(message=message, llm_provider="openai", model="m")


class TestErrorMapping:
    def test_quota_rate_limit(self):
        err = _rate_limit("You exceeded your current quota, please check your plan")
        with patch("litellm.completion", side_effect=err):
            with pytest.raises(QuotaExceededError):
                _call()

    def test_plain_rate_limit_is_agent_error(self):
        err = _rate_limit("Too many requests, slow down")
        with patch("litellm.completion", side_effect=err):
            with pytest.raises(AgentError) as exc_info:
                _call()
        assert not isinstance(exc_info.value, QuotaExceededError)

    def test_other_failure(self):
        with patch("litellm.completion", side_effect=RuntimeError("connection refused")):
            with pytest.raises(AgentError, match="connection refused"):
                _call()


# ---------------------------------------------------------------------------
# Raw request/response logs
# ---------------------------------------------------------------------------


class TestRequestLogging:
    def test_disabled_by_default(self):
        with patch("litellm.completion", return_value=_mock_response()):
            _call()
        assert not history_dir().exists()

    def test_writes_req_and_resp(self):
        with patch("litellm.completion", return_value=_mock_response()):
            _call(provider="openai", api_key="sk-secret", log_requests=True)
        names = sorted(p.name for p in history_dir().iterdir())
        assert len(names) == 2
        req = next(n for n in names if n.startswith("bb-req-"))
        resp = next(n for n in names if n.startswith("bb-resp-"))
        req_data = json.loads((history_dir() / req).read_text())
        assert req_data["model"] == "openai/my-model"
        assert "api_key" not in req_data
        assert "sk-secret" not in (history_dir() / req).read_text()
        assert json.loads((history_dir() / resp).read_text())["id"] == "resp-1"

    def test_request_logged_even_when_call_fails(self):
        with patch("litellm.completion", side_effect=RuntimeError("down")):
            with pytest.raises(AgentError):
                _call(log_requests=True)
        names = [p.name for p in history_dir().iterdir()]
        assert len(names) == 1 and names[0].startswith("bb-req-")

    def test_log_write_failure_only_warns(self):
        history_dir().write_text("not a directory")
        with patch("litellm.completion", return_value=_mock_response()):
            with patch("blueberry.fmt.warning") as warn:
                msg, reason, _ = _call(log_requests=True)
        assert msg.content == "ok"
        assert reason == "stop"
        assert warn.call_count == 2
        assert "failed to write request log" in warn.call_args[0][0]
