"""Line transformer tests — Claude and Codex log formats."""

from __future__ import annotations

import json

from collector.tailer import gap_marker
from collector.transformers import (
    bounded_tool_input,
    claude_history_to_events,
    claude_session_to_events,
    codex_history_to_events,
    codex_log_to_events,
    detect_role,
    stats_cost_total,
    transform_lines,
)


def _assistant(*content, usage=None, **extra) -> str:
    message = {"model": "claude-x", "content": list(content)}
    if usage is not None:
        message["usage"] = usage
    return json.dumps({
        "type": "assistant", "sessionId": "s1",
        "timestamp": "2026-01-01T00:00:00Z", "message": message, **extra,
    })


class TestClaudeHistory:
    def test_display_becomes_user_request(self):
        line = json.dumps({"display": "fix the build", "sessionId": "abc", "timestamp": 1767225600000})
        [evt] = claude_history_to_events(line)
        assert evt["agentId"] == "lead"
        assert evt["event"] == "user_request"
        assert evt["message"] == "fix the build"
        assert evt["timestamp"] == 1767225600000
        assert evt["metadata"] == {
            "source": "claude_history", "sessionId": "abc", "textLength": 13,
        }

    def test_long_text_is_clipped(self):
        [evt] = claude_history_to_events(json.dumps({"display": "x" * 500}))
        assert len(evt["message"]) == 120
        assert evt["metadata"]["textLength"] == 500
        assert "timestamp" not in evt

    def test_unrecognized_lines(self):
        assert claude_history_to_events("not json") == []
        assert claude_history_to_events("[1, 2]") == []
        assert claude_history_to_events(json.dumps({"display": ""})) == []
        assert claude_history_to_events("") == []


class TestClaudeSession:
    def test_user_string_content(self):
        line = json.dumps({"type": "user", "sessionId": "s1", "message": {"content": "hello"}})
        [evt] = claude_session_to_events(line)
        assert evt["event"] == "user_message"
        assert evt["message"] == "hello"
        assert evt["metadata"] == {"source": "claude_session", "sessionId": "s1"}

    def test_user_list_content_joined(self):
        line = json.dumps({"type": "user", "message": {"content": [
            {"type": "text", "text": "part one"},
            {"type": "tool_result", "content": "result"},
        ]}})
        [evt] = claude_session_to_events(line)
        assert evt["message"] == "part one result"

    def test_assistant_text_and_tool_use(self):
        line = _assistant(
            {"type": "text", "text": "on it"},
            {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
        )
        text, tool = claude_session_to_events(line)
        assert text["event"] == "assistant_message"
        assert text["metadata"]["model"] == "claude-x"
        assert text["timestamp"] == "2026-01-01T00:00:00Z"
        assert tool["event"] == "tool_call"
        assert tool["message"] == "Bash"
        assert tool["metadata"]["toolInput"] == {"command": "ls"}

    def test_large_tool_input_redacted(self):
        line = _assistant({"type": "tool_use", "name": "Write", "input": {"content": "y" * 600}})
        [tool] = claude_session_to_events(line)
        assert tool["metadata"]["toolInput"] == {"_truncated": True}

    def test_usage_becomes_token_usage(self):
        line = _assistant(usage={"input_tokens": 10, "output_tokens": 5, "cache_read_input_tokens": 100})
        [usage] = claude_session_to_events(line)
        assert usage["event"] == "token_usage"
        assert usage["metadata"]["tokenUsage"] == {
            "inputTokens": 10, "outputTokens": 5,
            "cacheReadInputTokens": 100, "totalTokens": 15,
        }

    def test_zero_usage_emits_nothing(self):
        assert claude_session_to_events(_assistant(usage={"input_tokens": 0})) == []

    def test_other_entry_types_ignored(self):
        assert claude_session_to_events(json.dumps({"type": "summary", "summary": "x"})) == []
        assert claude_session_to_events(json.dumps({"type": "assistant", "message": "oops"})) == []


class TestGapMarker:
    def test_every_json_transformer_surfaces_warning(self):
        line = gap_marker("/tmp/h.jsonl", 4096)
        for transform in (
            claude_history_to_events, claude_session_to_events,
            codex_history_to_events, codex_log_to_events,
        ):
            [evt] = transform(line)
            assert evt["event"] == "collector_warning"
            assert evt["status"] == "warning"
            assert evt["metadata"]["skippedBytes"] == 4096


class TestCodex:
    def test_detect_role(self):
        assert detect_role("Polish the UI colors") == "designer"
        assert detect_role("fix the CSS on the front page") == "frontend"
        assert detect_role("add an API endpoint") == "backend"
        assert detect_role("write docs") == "lead"
        assert detect_role(None) == "lead"

    def test_history_line(self):
        line = json.dumps({"session_id": "c1", "ts": 1767225600, "text": "Add database migration"})
        [evt] = codex_history_to_events(line)
        assert evt["agentId"] == "backend"
        assert evt["event"] == "user_request"
        assert evt["timestamp"] == "2026-01-01T00:00:00+00:00"
        assert evt["metadata"]["source"] == "codex_history"

    def test_history_bad_ts_omitted(self):
        [evt] = codex_history_to_events(json.dumps({"ts": "soon", "text": "hello"}))
        assert "timestamp" not in evt

    def test_log_markers(self):
        ts = "2026-01-01T10:00:00.123Z"
        [started] = codex_log_to_events(f"{ts} INFO codex: task_started id=1")
        assert started["event"] == "task_started"
        assert started["timestamp"].startswith("2026-01-01T10:00:00.123")

        [done] = codex_log_to_events(f"{ts} INFO codex: task_complete")
        assert done["event"] == "task_complete"

        [follow] = codex_log_to_events(f"{ts} INFO turn needs_follow_up=true")
        assert follow["status"] == "warning"

        [err] = codex_log_to_events(f"{ts} ERROR codex: boom")
        assert err["event"] == "runtime_error"
        assert err["status"] == "error"
        assert err["agentId"] == "backend"

    def test_log_tool_call(self):
        args = json.dumps({"command": ["npm", "run", "css"], "pad": "z" * 400})
        [evt] = codex_log_to_events(f"2026-01-01T10:00:00Z INFO ToolCall: shell {args}")
        assert evt["event"] == "tool_call"
        assert evt["message"] == "shell"
        assert evt["agentId"] == "frontend"
        assert len(evt["metadata"]["args"]) == 180

    def test_log_noise_ignored(self):
        assert codex_log_to_events("2026-01-01T10:00:00Z DEBUG render frame") == []
        assert codex_log_to_events("") == []


class TestHelpers:
    def test_bounded_tool_input(self):
        assert bounded_tool_input(None) == {}
        assert bounded_tool_input({"a": 1}) == {"a": 1}
        assert bounded_tool_input({"a": "b" * 600}) == {"_truncated": True}

    def test_stats_cost_total(self):
        stats = {"modelUsage": {
            "opus": {"costUSD": 1.25},
            "haiku": {"costUSD": 0.25},
            "bad": {"costUSD": "free"},
            "flag": {"costUSD": True},
        }}
        assert stats_cost_total(stats) == 1.5
        assert stats_cost_total({}) == 0.0
        assert stats_cost_total([]) == 0.0

    def test_transform_lines_skips_failing_line(self):
        def flaky(line: str):
            if line == "boom":
                raise RuntimeError("bad line")
            return [{"event": line}]

        out = transform_lines(flaky, ["a", "boom", "b"])
        assert out == [{"event": "a"}, {"event": "b"}]
