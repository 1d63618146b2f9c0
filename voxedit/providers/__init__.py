"""
Speech-to-text provider channels.

A channel is a duplex stream: raw audio frames go in, transcript events
come out to a listener (normally an UtteranceReconciler).
"""

from abc import ABC, abstractmethod

from ..types import TranscriptEvent


class TranscriptListener(ABC):
    """Receives events from a channel (normally an UtteranceReconciler)."""

    @abstractmethod
    def on_transcript(self, event: TranscriptEvent) -> None:
        pass

    @abstractmethod
    def on_close(self) -> None:
        pass

    @abstractmethod
    def on_error(self, cause: BaseException) -> None:
        pass


class TranscriptionChannel(ABC):
    """
    Base class for streaming transcription channels.

    Subclasses must implement:
    - start(): Open the connection and begin delivering events
    - send_audio(): Forward one PCM16 frame
    - finalize(): Ask the provider to flush the current segment
    - close(): Tear down the connection (idempotent)
    """

    name: str = "base"

    @abstractmethod
    def start(self, listener) -> None:
        """
        Open the channel.

        Args:
            listener: Object with on_transcript, on_close and on_error
        """
        pass

    @abstractmethod
    def send_audio(self, frame: bytes) -> None:
        """Send one frame of 16-bit little-endian mono PCM."""
        pass

    @abstractmethod
    def finalize(self) -> None:
        """
        Signal end of input.

        Does not resolve anything by itself; the provider answers with
        final events and eventually closes.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the channel and stop delivering events."""
        pass
