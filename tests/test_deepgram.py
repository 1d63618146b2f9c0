"""
Tests for the Deepgram streaming channel.

The websocket is a fake; no network access.
"""

import json
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse


class FakeWebSocket:
    """Iterable socket stand-in: yields queued messages, then ends or raises."""

    def __init__(self, messages=(), error=None):
        self.messages = list(messages)
        self.error = error
        self.sent = []
        self.closed = False

    def __iter__(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error

    def send(self, data):
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    def close(self):
        self.closed = True


def results(transcript, is_final=False, speech_final=False):
    return json.dumps({
        "type": "Results",
        "is_final": is_final,
        "speech_final": speech_final,
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.9}]},
    })


class TestParseMessage:
    """Tests for parse_message."""

    def test_results(self):
        from voxedit.providers.deepgram import parse_message
        from voxedit.types import TranscriptEvent

        event = parse_message(results("hello", is_final=True, speech_final=True))
        assert event == TranscriptEvent("hello", is_final=True, is_speech_final=True)

    def test_interim(self):
        from voxedit.providers.deepgram import parse_message

        event = parse_message(results("hel"))
        assert event.transcript == "hel"
        assert not event.is_final
        assert not event.is_speech_final

    def test_non_results_are_skipped(self):
        from voxedit.providers.deepgram import parse_message

        assert parse_message(json.dumps({"type": "UtteranceEnd"})) is None
        assert parse_message(json.dumps({"type": "Metadata", "request_id": "x"})) is None

    def test_malformed(self):
        from voxedit.providers.deepgram import parse_message

        assert parse_message("{not json") is None
        assert parse_message(json.dumps([1, 2])) is None

    def test_missing_alternatives(self):
        from voxedit.providers.deepgram import parse_message

        event = parse_message(json.dumps({"type": "Results", "channel": {}}))
        assert event.transcript == ""


class TestDeepgramChannel:
    """Tests for DeepgramChannel."""

    def create(self, ws=None, **kwargs):
        from voxedit.providers.deepgram import DeepgramChannel

        self.ws = ws or FakeWebSocket()
        self.connect = Mock(return_value=self.ws)
        return DeepgramChannel("dg-key", connect=self.connect, **kwargs)

    def query(self, channel):
        return parse_qs(urlparse(channel.build_url()).query)

    def test_url_parameters(self):
        channel = self.create(trailing_silence_ms=1000)
        params = self.query(channel)

        assert params["model"] == ["nova-3"]
        assert params["encoding"] == ["linear16"]
        assert params["sample_rate"] == ["16000"]
        assert params["interim_results"] == ["true"]
        assert params["endpointing"] == ["1000"]
        assert params["utterance_end_ms"] == ["1500"]

    def test_utterance_end_tracks_endpointing(self):
        params = self.query(self.create(trailing_silence_ms=2000))
        assert params["endpointing"] == ["2000"]
        assert params["utterance_end_ms"] == ["2500"]

    def test_endpointing_is_clamped(self):
        params = self.query(self.create(trailing_silence_ms=5))
        assert params["endpointing"] == ["100"]

    def test_keyterms_for_nova3(self):
        params = self.query(self.create(keyterms=["useState", "kwargs"]))
        assert params["keyterm"] == ["useState", "kwargs"]
        assert "keywords" not in params

    def test_keywords_for_older_models(self):
        params = self.query(self.create(model="nova-2", keyterms=["useState"]))
        assert params["keywords"] == ["useState:2"]
        assert "keyterm" not in params

    def test_start_authenticates_and_forwards_events(self):
        ws = FakeWebSocket([results("go to", is_final=True), json.dumps({"type": "Metadata"}), results("line 3")])
        channel = self.create(ws)
        listener = Mock()

        channel.start(listener)
        channel._reader.join(timeout=2)

        headers = self.connect.call_args.kwargs["additional_headers"]
        assert headers == {"Authorization": "Token dg-key"}
        transcripts = [c.args[0].transcript for c in listener.on_transcript.call_args_list]
        assert transcripts == ["go to", "line 3"]
        listener.on_close.assert_called_once()
        listener.on_error.assert_not_called()

    def test_socket_failure_reports_error(self):
        cause = ConnectionError("reset by peer")
        channel = self.create(FakeWebSocket(error=cause))
        listener = Mock()

        channel.start(listener)
        channel._reader.join(timeout=2)

        listener.on_error.assert_called_once_with(cause)
        listener.on_close.assert_not_called()

    def test_failure_while_closing_is_a_close(self):
        channel = self.create(FakeWebSocket(error=ConnectionError("closed")))
        channel._closing = True
        listener = Mock()

        channel.start(listener)
        channel._reader.join(timeout=2)

        listener.on_close.assert_called_once()
        listener.on_error.assert_not_called()

    def test_audio_and_finalize(self):
        channel = self.create()
        channel.start(Mock())
        channel.send_audio(b"\x01\x02")
        channel.send_audio(b"")
        channel.finalize()

        assert self.ws.sent == [b"\x01\x02", json.dumps({"type": "Finalize"})]

    def test_close_sends_close_stream_once(self):
        channel = self.create()
        channel.start(Mock())
        channel.close()
        channel.close()

        assert self.ws.sent == [json.dumps({"type": "CloseStream"})]
        assert self.ws.closed

    def test_nothing_sent_after_close(self):
        channel = self.create()
        channel.start(Mock())
        channel.close()
        channel.send_audio(b"\x00")
        channel.finalize()

        assert self.ws.sent == [json.dumps({"type": "CloseStream"})]

    def test_close_before_start(self):
        channel = self.create()
        channel.close()
        self.connect.assert_not_called()
