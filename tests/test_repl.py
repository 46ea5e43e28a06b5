"""Tests for the session driver: argument parsing, repl_loop and main()."""

from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from echogent import agent, fmt
from echogent.agent import (
    TurnResult,
    build_parser,
    build_system_prompt,
    main,
    repl_loop,
)
from echogent.config import _UNSET
from echogent.report import BootstrapError, ConfigError, TransportError
from echogent.stream import StepFinish, TextDelta
from echogent.tools import build_registry
from echogent.transcript import AssistantMessage, Transcript, UserMessage


@pytest.fixture
def stderr_console():
    buf = StringIO()
    old = fmt._console, fmt._quiet
    fmt._console = Console(file=buf, no_color=True, width=500)
    fmt._quiet = False
    yield buf
    fmt._console, fmt._quiet = old


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestArgumentParsing:
    def test_config_backed_flags_unset(self):
        args = build_parser().parse_args([])
        assert args.model is _UNSET
        assert args.max_steps is _UNSET
        assert args.quiet is _UNSET
        assert args.color is _UNSET
        assert args.base_dir == "."

    def test_flags_parsed(self):
        args = build_parser().parse_args(
            ["--model", "openai/gpt-4o", "--max-steps", "4", "--no-color", "-q"]
        )
        assert args.model == "openai/gpt-4o"
        assert args.max_steps == 4
        assert args.no_color is True
        assert args.quiet is True

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--color", "--no-color"])


class TestSystemPrompt:
    def test_default_prompt_names_tools(self, tmp_path):
        prompt = build_system_prompt(None, str(tmp_path))
        assert "text_editor_tool" in prompt
        assert f"Working directory: {tmp_path.resolve()}" in prompt

    def test_custom_prompt_replaces_default(self, tmp_path):
        prompt = build_system_prompt("Be terse.", str(tmp_path))
        assert prompt.startswith("Be terse.")
        assert "text_editor_tool" not in prompt


# ---------------------------------------------------------------------------
# repl_loop
# ---------------------------------------------------------------------------


class TestReplLoop:
    def _patch_session(self, inputs):
        """Return a patch context that replaces PromptSession with a mock."""
        mock_session = MagicMock()
        mock_session.prompt.side_effect = [
            v() if v in (EOFError, KeyboardInterrupt) else v for v in inputs
        ]
        return patch("prompt_toolkit.PromptSession", return_value=mock_session)

    def _fake_turn(self, calls, result=None):
        def run_turn(transcript, text, registry, step_ceiling, **kwargs):
            calls.append((text, step_ceiling, kwargs))
            transcript.append(UserMessage(text))
            transcript.append(AssistantMessage(f"echo: {text}"))
            return result or TurnResult(steps=1, exhausted=False)

        return run_turn

    def _loop(self, tmp_path, transcript=None, **overrides):
        kwargs = dict(
            step_ceiling=15,
            system_prompt="sys",
            llm_kwargs={"model": "m"},
            history_path=None,
        )
        kwargs.update(overrides)
        return repl_loop(
            transcript if transcript is not None else Transcript(),
            build_registry(str(tmp_path)),
            **kwargs,
        )

    def test_exit_command(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session(["/exit"]):
            transcript = self._loop(tmp_path)
        assert calls == []
        assert len(transcript) == 0

    def test_quit_command(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session(["/quit"]):
            self._loop(tmp_path)
        assert calls == []

    @pytest.mark.parametrize("exc", [EOFError, KeyboardInterrupt])
    def test_eof_or_ctrl_c_at_prompt_exits(self, tmp_path, monkeypatch, stderr_console, exc):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session([exc]):
            self._loop(tmp_path)
        assert calls == []

    def test_lines_run_as_turns(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session(["", "  ", "first", "second", EOFError]):
            transcript = self._loop(tmp_path, step_ceiling=4)
        assert [c[0] for c in calls] == ["first", "second"]
        assert calls[0][1] == 4
        assert calls[0][2]["system_prompt"] == "sys"
        assert calls[0][2]["llm_kwargs"] == {"model": "m"}
        assert len(transcript) == 4

    def test_transcript_shared_across_turns(self, tmp_path, monkeypatch, stderr_console):
        seen = []

        def run_turn(transcript, text, registry, step_ceiling, **kwargs):
            seen.append(len(transcript))
            transcript.append(UserMessage(text))
            return TurnResult(steps=1, exhausted=False)

        monkeypatch.setattr(agent, "run_turn", run_turn)
        with self._patch_session(["a", "b", "c", "/exit"]):
            self._loop(tmp_path)
        assert seen == [0, 1, 2]

    def test_clear_starts_new_transcript(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        original = Transcript()
        with self._patch_session(["before", "/clear", "after", "/exit"]):
            transcript = self._loop(tmp_path, transcript=original)
        assert transcript is not original
        assert [m.text for m in transcript] == ["after", "echo: after"]
        assert "conversation cleared (2 messages dropped)" in stderr_console.getvalue()

    def test_help(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session(["/help", "/exit"]):
            self._loop(tmp_path)
        assert calls == []
        assert "/clear" in stderr_console.getvalue()

    def test_unknown_slash_passes_through(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(agent, "run_turn", self._fake_turn(calls))
        with self._patch_session(["/usr/bin is where?", "/exit"]):
            self._loop(tmp_path)
        assert [c[0] for c in calls] == ["/usr/bin is where?"]

    def test_interrupted_turn_keeps_loop_alive(self, tmp_path, monkeypatch, stderr_console):
        attempts = []

        def run_turn(transcript, text, registry, step_ceiling, **kwargs):
            attempts.append(text)
            if text == "slow":
                raise KeyboardInterrupt
            return TurnResult(steps=1, exhausted=False)

        monkeypatch.setattr(agent, "run_turn", run_turn)
        with self._patch_session(["slow", "fast", "/exit"]):
            self._loop(tmp_path)
        assert attempts == ["slow", "fast"]
        assert "interrupted, turn aborted." in stderr_console.getvalue()

    def test_exhausted_turn_reported(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        monkeypatch.setattr(
            agent, "run_turn", self._fake_turn(calls, TurnResult(steps=15, exhausted=True))
        )
        with self._patch_session(["go", "/exit"]):
            self._loop(tmp_path)
        out = stderr_console.getvalue()
        assert "step limit reached (15 steps)" in out
        assert "Context delta:" in out

    def test_failure_is_fatal_until_model_answers(self, tmp_path, monkeypatch, stderr_console):
        calls = []
        results = iter(
            [
                TurnResult(steps=1, exhausted=False, error="refused", output_seen=False),
                TurnResult(steps=1, exhausted=False),
                TurnResult(steps=1, exhausted=False, error="reset", output_seen=False),
            ]
        )

        def run_turn(transcript, text, registry, step_ceiling, **kwargs):
            calls.append(kwargs["fatal_before_output"])
            return next(results)

        monkeypatch.setattr(agent, "run_turn", run_turn)
        with self._patch_session(["a", "b", "c", "/exit"]):
            self._loop(tmp_path)
        assert calls == [True, True, False]

    def test_early_transport_error_propagates(self, tmp_path, monkeypatch, stderr_console):
        def run_turn(transcript, text, registry, step_ceiling, **kwargs):
            raise TransportError("LLM call failed: refused")

        monkeypatch.setattr(agent, "run_turn", run_turn)
        with self._patch_session(["hello", "/exit"]):
            with pytest.raises(TransportError):
                self._loop(tmp_path)

    def test_history_file_used(self, tmp_path, monkeypatch, stderr_console):
        monkeypatch.setattr(agent, "run_turn", self._fake_turn([]))
        history = tmp_path / "cfg" / "repl_history"
        with self._patch_session(["/exit"]) as mock_cls:
            self._loop(tmp_path, history_path=history)
        assert history.parent.is_dir()
        used = mock_cls.call_args.kwargs["history"]
        assert type(used).__name__ == "FileHistory"


# ---------------------------------------------------------------------------
# main / _run_main
# ---------------------------------------------------------------------------


class TestMain:
    def test_version(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["echogent", "--version"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip()

    def test_init_config(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["echogent", "--init-config"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0
        assert "max_steps = 15" in capsys.readouterr().out

    def test_bootstrap_failure_exits_one(self, tmp_path, monkeypatch, stderr_console):
        def fail(args):
            raise BootstrapError("No API key provided")

        monkeypatch.setattr(agent, "_run_main", fail)
        monkeypatch.setattr("sys.argv", ["echogent"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "No API key provided" in stderr_console.getvalue()

    def _unreachable_session(self, tmp_path, monkeypatch, model, inputs):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
        monkeypatch.setattr(agent, "get_or_create_api_key", lambda *a: "sk-test")
        monkeypatch.setattr(agent, "stream_llm", model)
        monkeypatch.setattr(
            "sys.argv",
            ["echogent", "--base-dir", str(tmp_path), "-q", "--skip-balance-check"],
        )
        mock_session = MagicMock()
        mock_session.prompt.side_effect = inputs
        return patch("prompt_toolkit.PromptSession", return_value=mock_session)

    @pytest.fixture
    def restore_fmt(self):
        old = fmt._console, fmt._out, fmt._quiet
        yield
        fmt._console, fmt._out, fmt._quiet = old

    def test_unreachable_endpoint_exits_one(self, tmp_path, monkeypatch, capsys, restore_fmt):
        def refuse(messages, tools, **kwargs):
            raise TransportError("LLM call failed: connection refused")
            yield

        with self._unreachable_session(tmp_path, monkeypatch, refuse, ["hello", "/exit"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert err.count("LLM call failed: connection refused") == 1

    def test_failure_after_first_answer_keeps_session(
        self, tmp_path, monkeypatch, capsys, restore_fmt
    ):
        replies = iter(
            [[TextDelta("hi"), StepFinish("stop")], [TransportError("LLM call failed: reset")]]
        )

        def model(messages, tools, **kwargs):
            for chunk in next(replies):
                if isinstance(chunk, BaseException):
                    raise chunk
                yield chunk

        with self._unreachable_session(
            tmp_path, monkeypatch, model, ["hello", "again", "/exit"]
        ):
            main()
        captured = capsys.readouterr()
        assert captured.out == "hi\n"
        assert "LLM call failed: reset" in captured.err

    def test_missing_base_dir(self, tmp_path):
        args = build_parser().parse_args(["--base-dir", str(tmp_path / "nope")])
        with pytest.raises(ConfigError, match="base directory does not exist"):
            agent._run_main(args)

    def test_max_steps_must_be_positive(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
        args = build_parser().parse_args(["--base-dir", str(tmp_path), "--max-steps", "0"])
        with pytest.raises(ConfigError, match="at least 1"):
            agent._run_main(args)


class TestRunMain:
    @pytest.fixture
    def wired(self, tmp_path, monkeypatch):
        """Patch the bootstrap collaborators and capture what repl_loop receives."""
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
        seen = {}
        monkeypatch.setattr(agent, "get_or_create_api_key", lambda *a: "sk-test")
        monkeypatch.setattr(
            agent, "ensure_balance", lambda client, lo, amt: seen.setdefault("balance", (client, lo, amt))
        )

        def fake_repl(transcript, registry, **kwargs):
            seen["registry"] = registry
            seen.update(kwargs)
            return transcript

        monkeypatch.setattr(agent, "repl_loop", fake_repl)
        old = fmt._console, fmt._out, fmt._quiet
        yield seen
        fmt._console, fmt._out, fmt._quiet = old

    def test_defaults_wired(self, tmp_path, wired):
        args = build_parser().parse_args(["--base-dir", str(tmp_path), "-q"])
        agent._run_main(args)

        assert wired["step_ceiling"] == 15
        assert wired["llm_kwargs"]["api_key"] == "sk-test"
        assert wired["llm_kwargs"]["model"] == "anthropic/claude-sonnet-4-20250514"
        assert wired["llm_kwargs"]["max_output_tokens"] == 8192
        assert "bash_execute" in wired["registry"].names()
        assert wired["history_path"] == tmp_path / "cfg" / "echogent" / "repl_history"
        client, min_balance, top_up = wired["balance"]
        assert client.api_key == "sk-test"
        assert (min_balance, top_up) == (1, 10)

    def test_project_config_applied(self, tmp_path, wired):
        (tmp_path / "echogent.toml").write_text("max_steps = 5\nmodel = \"x/y\"\n")
        args = build_parser().parse_args(["--base-dir", str(tmp_path), "-q"])
        agent._run_main(args)
        assert wired["step_ceiling"] == 5
        assert wired["llm_kwargs"]["model"] == "x/y"

    def test_skip_balance_check(self, tmp_path, wired):
        args = build_parser().parse_args(
            ["--base-dir", str(tmp_path), "-q", "--skip-balance-check"]
        )
        agent._run_main(args)
        assert "balance" not in wired
