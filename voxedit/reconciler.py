"""
Utterance reconciliation for streaming transcription.

Turns a stream of overlapping, revisable transcript events from one
listening session into exactly one finalized utterance string.

The provider decides when a segment is final (`is_final`) and when the
speaker has stopped (`is_speech_final`). We stitch final segments together,
keep a live preview of the segment in progress, and fall back to an idle
timer when the provider never sends a speech-final event.

Resolution happens exactly once, by whichever of these comes first:
- a speech-final event
- the idle timer firing with a non-empty preview
- the provider channel closing
- a provider transport error (resolves to failure)
"""

import threading
from typing import Callable, Optional

from .errors import ListeningCancelled, TranscriptionTransportError
from .providers import TranscriptListener
from .types import TranscriptEvent


# Timing constants (milliseconds)
MIN_TRAILING_SILENCE_MS = 100
DEFAULT_TRAILING_SILENCE_MS = 1000
MIN_IDLE_TIMEOUT_MS = 1200
IDLE_MARGIN_MS = 200  # Cushion past the provider's own endpointing silence

TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]


def clamp_trailing_silence(trailing_silence_ms: int) -> int:
    """Clamp the configured trailing silence to the supported minimum."""
    return max(MIN_TRAILING_SILENCE_MS, int(trailing_silence_ms))


def idle_timeout_seconds(trailing_silence_ms: int) -> float:
    """Seconds of event silence before we finalize on our own."""
    trailing = clamp_trailing_silence(trailing_silence_ms)
    return max(MIN_IDLE_TIMEOUT_MS, trailing + IDLE_MARGIN_MS) / 1000.0


def stitch_with_overlap(base: str, addition: str) -> str:
    """
    Append `addition` to `base`, dropping any overlap between them.

    Finds the longest suffix of `base` that is also a prefix of
    `addition` and appends only the remainder. Providers sometimes resend
    a few trailing characters at each final boundary.

    With no overlap the two are joined by a single space, unless one side
    already has whitespace at the join, so separate finals don't run
    together.

    Examples:
        "hello wor" + "world"   -> "hello world"
        "hello"     + "there"   -> "hello there"
    """
    if not base:
        return addition
    if not addition:
        return base

    for size in range(min(len(base), len(addition)), 0, -1):
        if base.endswith(addition[:size]):
            return base + addition[size:]

    # No overlap: keep the words apart
    if base[-1].isspace() or addition[0].isspace():
        return base + addition
    return f"{base} {addition}"


class UtteranceReconciler(TranscriptListener):
    """
    Reconciles one listening session's transcript events into an utterance.

    Thread-safe: provider callbacks, the idle timer and `cancel()` may run
    on different threads. A single lock serializes them so events are
    handled one at a time in arrival order.

    Usage:
        reconciler = UtteranceReconciler(trailing_silence_ms=1000, on_interim=show)
        channel.start(reconciler)       # channel calls on_transcript / on_close / on_error
        text = reconciler.wait()        # "" when nothing was said
    """

    def __init__(
        self,
        trailing_silence_ms: int = DEFAULT_TRAILING_SILENCE_MS,
        on_interim: Optional[Callable[[str], None]] = None,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.trailing_silence_ms = clamp_trailing_silence(trailing_silence_ms)
        self.idle_timeout = idle_timeout_seconds(self.trailing_silence_ms)
        self.on_interim = on_interim
        self._timer_factory = timer_factory

        # Session state
        self.committed: str = ""
        self.preview: str = ""
        self._settled = False
        self._result: Optional[str] = None
        self._error: Optional[BaseException] = None

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._timer = None
        self._timer_generation = 0

    @property
    def settled(self) -> bool:
        """True once the session has resolved or failed."""
        with self._lock:
            return self._settled

    def on_transcript(self, event: TranscriptEvent) -> None:
        """Handle one transcript event from the provider."""
        text = (event.transcript or "").strip()
        if not text:
            return

        with self._lock:
            if self._settled:
                return

            if event.is_final:
                self.committed = stitch_with_overlap(self.committed, text)
                self.preview = self.committed
            else:
                # Interim hypotheses revise themselves: replace, never append
                self.preview = f"{self.committed} {text}" if self.committed else text

            if event.is_speech_final:
                self._settle_locked(result=self.preview.strip())
                return

            preview = self.preview
            self._reset_idle_timer_locked()

        if self.on_interim:
            try:
                self.on_interim(preview)
            except Exception as e:
                print(f"[Reconciler] Interim callback error: {e}")

    def on_close(self) -> None:
        """Provider closed the channel: resolve with what was committed."""
        with self._lock:
            if self._settled:
                return
            self._settle_locked(result=self.committed.strip())

    def on_error(self, cause: BaseException) -> None:
        """Provider transport failed: resolve to failure."""
        with self._lock:
            if self._settled:
                return
            print(f"[Reconciler] Transport error: {cause}")
            self._settle_locked(error=TranscriptionTransportError(cause))

    def cancel(self) -> None:
        """Tear down an unresolved session. Pending waiters get ListeningCancelled."""
        with self._lock:
            if self._settled:
                return
            self._settle_locked(error=ListeningCancelled("Listening session was cancelled"))

    def wait(self, timeout: Optional[float] = None) -> str:
        """
        Block until the session resolves.

        Returns:
            The trimmed utterance, or "" if nothing was said

        Raises:
            TranscriptionTransportError: the provider channel failed
            ListeningCancelled: the session was cancelled
            TimeoutError: `timeout` elapsed first
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Utterance not resolved after {timeout}s")
        if self._error is not None:
            raise self._error
        return self._result or ""

    def _reset_idle_timer_locked(self) -> None:
        """Replace the pending idle timer. Must be called with lock held."""
        self._cancel_timer_locked()
        self._timer_generation += 1
        generation = self._timer_generation
        timer = self._timer_factory(self.idle_timeout, lambda: self._on_idle(generation))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self, generation: int) -> None:
        """Idle timer fired: treat prolonged silence as end of utterance."""
        with self._lock:
            if self._settled or generation != self._timer_generation:
                return
            self._timer = None
            utterance = self.preview.strip()
            if utterance:
                print(f"[Reconciler] Idle timeout after {self.idle_timeout:.1f}s")
                self._settle_locked(result=utterance)

    def _settle_locked(
        self,
        result: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Resolve exactly once. Must be called with lock held."""
        self._settled = True
        self._cancel_timer_locked()
        self._result = result
        self._error = error
        self._done.set()
