"""
Deepgram live streaming channel.

Streams raw 16 kHz mono PCM over a websocket and forwards transcript
results to a listener from a background reader thread.
"""

import json
import threading
import urllib.parse
from typing import Callable, List, Optional

from websockets.sync.client import connect as ws_connect

from . import TranscriptionChannel
from ..reconciler import clamp_trailing_silence
from ..types import TranscriptEvent


def parse_message(raw) -> Optional[TranscriptEvent]:
    """
    Convert one Deepgram message into a TranscriptEvent.

    Returns None for anything that isn't a transcript result
    (metadata, UtteranceEnd, SpeechStarted, malformed JSON).
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None

    if not isinstance(message, dict) or message.get("type") != "Results":
        return None

    alternatives = (message.get("channel") or {}).get("alternatives") or [{}]
    transcript = alternatives[0].get("transcript") or ""

    return TranscriptEvent(
        transcript=transcript,
        is_final=message.get("is_final") is True,
        is_speech_final=message.get("speech_final") is True,
    )


class DeepgramChannel(TranscriptionChannel):
    """
    Duplex websocket to Deepgram's live transcription API.

    Usage:
        channel = DeepgramChannel(api_key, trailing_silence_ms=1000)
        channel.start(reconciler)
        channel.send_audio(frame)
        channel.finalize()      # end of input
        channel.close()
    """

    name = "deepgram"

    WS_URL = "wss://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str,
        model: str = "nova-3",
        sample_rate: int = 16000,
        trailing_silence_ms: int = 1000,
        keyterms: Optional[List[str]] = None,
        connect: Callable = ws_connect,
    ):
        self.api_key = api_key
        self.model = model
        self.sample_rate = sample_rate
        self.trailing_silence_ms = clamp_trailing_silence(trailing_silence_ms)
        self.keyterms = list(keyterms or [])
        self._connect = connect

        self._ws = None
        self._listener = None
        self._reader: Optional[threading.Thread] = None
        self._closing = False
        self._lock = threading.Lock()

    def build_url(self) -> str:
        """Websocket URL with live transcription options."""
        params = [
            ("model", self.model),
            ("encoding", "linear16"),
            ("sample_rate", str(self.sample_rate)),
            ("channels", "1"),
            ("interim_results", "true"),
            ("smart_format", "true"),
            # Deepgram's own endpointing silence
            ("endpointing", str(self.trailing_silence_ms)),
            # Finalization guardrail, kept a bit above endpointing
            ("utterance_end_ms", str(max(1500, self.trailing_silence_ms + 500))),
        ]

        # nova-3 takes keyterm; older models take keywords with a boost
        if self.model.startswith("nova-3"):
            params.extend(("keyterm", term) for term in self.keyterms)
        else:
            params.extend(("keywords", f"{term}:2") for term in self.keyterms)

        return f"{self.WS_URL}?{urllib.parse.urlencode(params)}"

    def start(self, listener) -> None:
        """Open the socket and start the reader thread."""
        self._listener = listener
        self._ws = self._connect(
            self.build_url(),
            additional_headers={"Authorization": f"Token {self.api_key}"},
        )
        print(f"[{self.name}] Connected ({self.model}, endpointing {self.trailing_silence_ms}ms)")

        self._reader = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader.start()

    def _reader_loop(self) -> None:
        """Forward messages until the socket closes."""
        listener = self._listener
        try:
            for raw in self._ws:
                event = parse_message(raw)
                if event is not None:
                    listener.on_transcript(event)
        except Exception as e:
            if self._closing:
                listener.on_close()
            else:
                listener.on_error(e)
            return

        listener.on_close()

    def send_audio(self, frame: bytes) -> None:
        if not frame or self._ws is None or self._closing:
            return
        try:
            self._ws.send(frame)
        except Exception as e:
            print(f"[{self.name}] Dropped audio frame: {e}")

    def finalize(self) -> None:
        if self._ws is None or self._closing:
            return
        try:
            self._ws.send(json.dumps({"type": "Finalize"}))
        except Exception as e:
            print(f"[{self.name}] Finalize failed: {e}")

    def close(self) -> None:
        with self._lock:
            if self._closing or self._ws is None:
                self._closing = True
                return
            self._closing = True

        try:
            self._ws.send(json.dumps({"type": "CloseStream"}))
        except Exception as e:
            print(f"[{self.name}] CloseStream not sent: {e}")
        try:
            self._ws.close()
        except Exception as e:
            print(f"[{self.name}] Error closing socket: {e}")

        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)
        print(f"[{self.name}] Closed")
