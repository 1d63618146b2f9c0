"""
Microphone capture for streaming transcription.

Opens one sounddevice input stream and forwards 16-bit mono PCM frames to
a callback. Stopping the stream signals end of input exactly once.
"""

import threading
from typing import Callable, Optional

import numpy as np


# Constants
DEFAULT_BLOCKSIZE = 1024


def find_device(name: str) -> Optional[int]:
    """Find an input device index by name (fuzzy matching)."""
    import sounddevice as sd

    devices = sd.query_devices()
    wanted = name.lower()
    inputs = [(i, d) for i, d in enumerate(devices) if d["max_input_channels"] > 0]

    # Exact match first
    for i, d in inputs:
        if d["name"].lower() == wanted:
            return i

    # Substring match
    for i, d in inputs:
        if wanted in d["name"].lower():
            return i

    return None


class MicStream:
    """
    One microphone capture for one listening session.

    Thread-safe: stop() may be called from any thread. The stream is
    closed before end of input is signalled.

    Usage:
        mic = MicStream(sample_rate=16000)
        mic.start(on_frame=channel.send_audio, on_end=channel.finalize)
        ...
        mic.stop()
    """

    def __init__(self, sample_rate: int = 16000, device: str = ""):
        self.sample_rate = sample_rate
        self.device = device
        self.stream = None
        self.is_recording = False

        self._on_frame: Optional[Callable[[bytes], None]] = None
        self._on_end: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()

    def start(
        self,
        on_frame: Callable[[bytes], None],
        on_end: Optional[Callable[[], None]] = None,
    ) -> None:
        """Begin capturing audio."""
        import sounddevice as sd

        device_index = None
        if self.device:
            device_index = find_device(self.device)
            if device_index is None:
                print(f"[Mic] Not found: {self.device}, using system default")

        with self._lock:
            self._on_frame = on_frame
            self._on_end = on_end
            self.is_recording = True

        stream = sd.InputStream(
            device=device_index,
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            blocksize=DEFAULT_BLOCKSIZE,
            callback=self._audio_callback,
        )
        stream.start()
        self.stream = stream
        print(f"[Mic] Listening ({self.device or 'default device'})")

    def stop(self) -> None:
        """Stop capturing and signal end of input. Safe to call twice."""
        with self._lock:
            if not self.is_recording:
                return
            self.is_recording = False
            self._on_frame = None
            on_end, self._on_end = self._on_end, None
            stream, self.stream = self.stream, None

        # Close outside the lock to avoid deadlock with the audio callback
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                print(f"[Mic] Error closing stream: {e}")

        if on_end:
            on_end()

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Called by sounddevice for each audio block."""
        if status:
            print(f"[Mic] Callback status: {status}")

        with self._lock:
            callback = self._on_frame
        if callback is None:
            return

        callback(indata.copy().tobytes())
