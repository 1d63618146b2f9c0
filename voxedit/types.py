"""
Shared type definitions for VoxEdit.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class TranscriptEvent:
    """One message from the speech-to-text provider."""
    transcript: str
    is_final: bool = False          # Segment is locked, provider won't revise it
    is_speech_final: bool = False   # Speaker paused long enough to end the utterance


@dataclass(frozen=True)
class RemovedSpan:
    """A run of deleted old-text lines, anchored at a new-text line."""
    anchor: int
    count: int


@dataclass(frozen=True)
class MovedSpan:
    """An added span whose text appears verbatim elsewhere in the old text."""
    start: int
    end: int
    from_start: int
    from_end: int


@dataclass
class DiffResult:
    """
    Line-level edit script between two texts.

    All line numbers are 0-based. Spans in `added` are inclusive and in
    new-text coordinates; `moved` is a subset of `added`.
    """
    added: List[Tuple[int, int]] = field(default_factory=list)
    removed: List[RemovedSpan] = field(default_factory=list)
    moved: List[MovedSpan] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.moved)


@dataclass(frozen=True)
class Decoration:
    """A line range to highlight, with an optional inline label."""
    start_line: int
    end_line: int
    label: Optional[str] = None


@dataclass(frozen=True)
class RouteResult:
    """Classified utterance returned by the language model."""
    type: str       # "command" | "modification" | "question"
    payload: str
    raw: str


@dataclass
class ConfigSnapshot:
    """
    Immutable snapshot of configuration for a session.
    Ensures config changes mid-session don't cause inconsistency.
    """
    # Listening
    trailing_silence_ms: int
    sample_rate: int
    input_device: str
    stt_model: str

    # Presentation
    dwell_ms: int

    # Classification
    prompt: str
    commands_only: bool
    reasoning_effort: str
    max_context_chars: int

    # API Keys
    groq_api_key: str
    openrouter_api_key: str
    deepgram_api_key: str

    # Speech biasing terms sent with the stream
    keyterms: List[str] = field(default_factory=list)
