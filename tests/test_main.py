"""
Tests for the listen/route/apply loop glue.
"""

from unittest.mock import Mock, patch

import pytest


class TestHandleUtterance:
    """Tests for handle_utterance."""

    @pytest.fixture(autouse=True)
    def _setup(self, timers, snapshot):
        from voxedit.apply import DiffPresenter, TextBuffer

        self.document = TextBuffer("a\nc", name="a.py")
        self.presenter = DiffPresenter(timer_factory=timers)
        self.config = snapshot
        self.metrics = Mock()
        self.on_command = Mock()
        self.on_answer = Mock()

    def handle(self, utterance):
        from voxedit.__main__ import handle_utterance

        return handle_utterance(
            utterance,
            self.document,
            self.presenter,
            self.config,
            metrics=self.metrics,
            on_command=self.on_command,
            on_answer=self.on_answer,
        )

    def route(self, type_, payload):
        from voxedit.types import RouteResult
        return RouteResult(type=type_, payload=payload, raw=f"{type_} {payload}")

    def test_empty_utterance_is_ignored(self):
        with patch("voxedit.__main__.classify_utterance") as classify:
            assert self.handle("   ") is True
        classify.assert_not_called()

    @pytest.mark.parametrize("utterance", ["pause", "Stop listening.", "ok pause"])
    def test_pause_stops_loop(self, utterance):
        with patch("voxedit.__main__.classify_utterance") as classify:
            assert self.handle(utterance) is False
        classify.assert_not_called()

    def test_paused_word_is_not_pause(self):
        with patch("voxedit.__main__.classify_utterance", return_value=self.route("command", "x")):
            assert self.handle("it paused there") is True

    def test_modification_is_applied(self):
        route = self.route("modification", "```python\na\nb\nc\n```")
        with patch("voxedit.__main__.classify_utterance", return_value=route) as classify:
            assert self.handle("add b") is True

        assert classify.call_args.args[:3] == ("add b", "a\nc", "a.py")
        assert self.document.get_text() == "a\nb\nc"
        assert self.document.live_decoration_types == 3
        events = [c.args[0] for c in self.metrics.log.call_args_list]
        assert events == ["classification", "apply"]
        assert self.metrics.log.call_args.kwargs["added"] == 1

    def test_command_goes_to_handler(self):
        with patch("voxedit.__main__.classify_utterance", return_value=self.route("command", "save")):
            self.handle("save the file")

        self.on_command.assert_called_once_with("save")
        assert self.document.get_text() == "a\nc"

    def test_question_is_answered(self):
        with patch("voxedit.__main__.classify_utterance", return_value=self.route("question", "It returns c.")):
            self.handle("what does this return")

        self.on_answer.assert_called_once_with("what does this return", "It returns c.")

    @pytest.mark.parametrize("answer", ["Thank you.", "Thank you,", "Thank you :)", "  THANK YOU!  "])
    def test_thank_you_is_suppressed(self, answer):
        with patch("voxedit.__main__.classify_utterance", return_value=self.route("question", answer)):
            self.handle("thanks")

        self.on_answer.assert_not_called()

    def test_longer_thanks_is_answered(self):
        route = self.route("question", "Thank you for asking. It returns c.")
        with patch("voxedit.__main__.classify_utterance", return_value=route):
            self.handle("what does this return")

        self.on_answer.assert_called_once()

    def test_printed_answer_shows_question(self, capsys):
        from voxedit.__main__ import _print_answer

        _print_answer("what does this return", "It returns c.\n")

        lines = capsys.readouterr().out.splitlines()
        assert lines[1].endswith("] Q: what does this return")
        assert lines[2] == "It returns c."

    def test_classification_failure_keeps_listening(self):
        from voxedit.errors import ClassificationError

        with patch("voxedit.__main__.classify_utterance", side_effect=ClassificationError("no keys")):
            assert self.handle("undo") is True
        self.metrics.log.assert_not_called()

    def test_mutation_failure_keeps_listening(self):
        from voxedit.errors import DocumentMutationFailure

        route = self.route("modification", "new text")
        self.presenter.apply = Mock(side_effect=DocumentMutationFailure(OSError("ro")))
        with patch("voxedit.__main__.classify_utterance", return_value=route):
            assert self.handle("rewrite") is True

        assert self.document.get_text() == "a\nc"


class TestArgs:
    """Tests for command-line parsing."""

    def test_defaults(self):
        from voxedit.__main__ import _parse_args

        args = _parse_args(["notes.md"])
        assert str(args.file) == "notes.md"
        assert args.profile is None
        assert args.trailing_silence_ms is None
        assert args.commands_only is False

    def test_options(self):
        from voxedit.__main__ import _parse_args

        args = _parse_args(["a.py", "--profile", "balanced", "--trailing-silence-ms", "1800", "--commands-only"])
        assert args.profile == "balanced"
        assert args.trailing_silence_ms == 1800
        assert args.commands_only is True

    def test_unknown_profile_is_rejected(self):
        from voxedit.__main__ import _parse_args

        with pytest.raises(SystemExit):
            _parse_args(["a.py", "--profile", "turbo"])
