"""
Listening session lifecycle.

A ListeningSession is one "start listening" invocation: it wires the
microphone into a provider channel, feeds the channel's events to an
UtteranceReconciler, and tears everything down once the utterance
resolves. SessionManager keeps at most one session open; starting a new
one hard-cancels the previous.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TYPE_CHECKING
from uuid import UUID, uuid4

from .errors import ListeningCancelled
from .metrics import log_session_complete, log_session_start, log_utterance
from .providers import TranscriptionChannel
from .reconciler import UtteranceReconciler
from .types import ConfigSnapshot

if TYPE_CHECKING:
    from .audio import MicStream
    from .metrics import MetricsWriter


@dataclass
class ListeningSession:
    """
    Owned handle for one listening session.

    Produces exactly one utterance (possibly "") or one failure.
    """
    id: UUID
    config_snapshot: ConfigSnapshot
    channel: TranscriptionChannel
    mic: "MicStream"
    on_complete: Callable[["ListeningSession"], None]
    on_interim: Optional[Callable[[str], None]] = None
    metrics: Optional["MetricsWriter"] = None
    timer_factory: Callable = threading.Timer

    # Runtime state
    reconciler: Optional[UtteranceReconciler] = None
    is_active: bool = False
    start_time: float = 0.0
    _closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def start(self) -> None:
        """Open the provider channel, then start feeding it audio."""
        self.reconciler = UtteranceReconciler(
            trailing_silence_ms=self.config_snapshot.trailing_silence_ms,
            on_interim=self.on_interim,
            timer_factory=self.timer_factory,
        )
        self.is_active = True
        self.start_time = time.time()

        if self.metrics:
            log_session_start(
                self.metrics,
                session_id=str(self.id),
                provider=self.channel.name,
                trailing_silence_ms=self.config_snapshot.trailing_silence_ms,
            )

        try:
            self.channel.start(self.reconciler)
            self.mic.start(on_frame=self.channel.send_audio, on_end=self.channel.finalize)
        except Exception as e:
            print(f"[Session] Failed to start: {e}")
            self.reconciler.on_error(e)
            self.close()

    def wait(self, timeout: Optional[float] = None) -> str:
        """
        Block until the utterance resolves, then tear the session down.

        Returns:
            The utterance, or "" if nothing was said

        Raises:
            TranscriptionTransportError: the provider channel failed
            ListeningCancelled: another session replaced this one
        """
        outcome = "error"
        text = ""
        try:
            text = self.reconciler.wait(timeout)
            outcome = "resolved" if text else "empty"
            return text
        except ListeningCancelled:
            outcome = "cancelled"
            raise
        finally:
            self.close()
            if self.metrics:
                log_utterance(
                    self.metrics,
                    session_id=str(self.id),
                    text=text,
                    latency_ms=(time.time() - self.start_time) * 1000,
                    outcome=outcome,
                )

    @property
    def is_open(self) -> bool:
        """True until close() has run."""
        with self._lock:
            return not self._closed

    def listen(self, timeout: Optional[float] = None) -> str:
        """start() then wait()."""
        self.start()
        return self.wait(timeout)

    def cancel(self) -> None:
        """Hard-cancel: settle the reconciler and tear down synchronously."""
        if self.reconciler is not None:
            self.reconciler.cancel()
        self.close()

    def close(self) -> None:
        """Stop the mic and close the channel. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.mic.stop()
        except Exception as e:
            print(f"[Session] Error stopping mic: {e}")

        try:
            self.channel.close()
        except Exception as e:
            print(f"[Session] Error closing channel: {e}")

        self.is_active = False

        if self.metrics:
            log_session_complete(
                self.metrics,
                session_id=str(self.id),
                total_duration_ms=(time.time() - self.start_time) * 1000,
            )

        self.on_complete(self)


class SessionManager:
    """
    Owns the single open listening session.

    Starting a session while another is open tears the old one down
    (channel, mic and idle timer) before the new one is created.
    """

    def __init__(
        self,
        config_snapshot_fn: Callable[[], ConfigSnapshot],
        channel_factory: Callable[[ConfigSnapshot], TranscriptionChannel],
        mic_factory: Callable[[ConfigSnapshot], "MicStream"],
        metrics: Optional["MetricsWriter"] = None,
        timer_factory: Callable = threading.Timer,
    ):
        self.config_snapshot_fn = config_snapshot_fn
        self.channel_factory = channel_factory
        self.mic_factory = mic_factory
        self.metrics = metrics
        self.timer_factory = timer_factory

        self.active_session: Optional[ListeningSession] = None
        self._lock = threading.RLock()

    def start_session(
        self,
        on_interim: Optional[Callable[[str], None]] = None,
    ) -> ListeningSession:
        """
        Create a new session, cancelling any open one first.

        The returned session is not started; call listen() on it.
        """
        with self._lock:
            previous = self.active_session
            if previous is not None and previous.is_open:
                print(f"[Session] Cancelling open session {str(previous.id)[:8]}")
                previous.cancel()

            config = self.config_snapshot_fn()
            session = ListeningSession(
                id=uuid4(),
                config_snapshot=config,
                channel=self.channel_factory(config),
                mic=self.mic_factory(config),
                on_complete=self._on_session_complete,
                on_interim=on_interim,
                metrics=self.metrics,
                timer_factory=self.timer_factory,
            )

            self.active_session = session
            return session

    def stop_session(self, session: Optional[ListeningSession] = None) -> None:
        """Cancel `session` (or whichever is open)."""
        with self._lock:
            target = session or self.active_session
        if target is not None:
            target.cancel()

    def _on_session_complete(self, session: ListeningSession) -> None:
        with self._lock:
            if self.active_session is session:
                self.active_session = None

    def is_busy(self) -> bool:
        """Check if a session is currently open."""
        with self._lock:
            return self.active_session is not None and self.active_session.is_open
