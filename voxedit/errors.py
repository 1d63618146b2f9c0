"""
Exceptions raised by VoxEdit.

Empty utterances and degenerate diffs are normal results, not errors.
"""

from typing import Optional


class VoxEditError(Exception):
    """Base class for all VoxEdit errors."""


class TranscriptionTransportError(VoxEditError):
    """The speech-to-text channel failed before the utterance resolved."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        message = f"Transcription transport failed: {cause}" if cause else "Transcription transport failed"
        super().__init__(message)


class ListeningCancelled(VoxEditError):
    """The listening session was torn down before it resolved."""


class DocumentMutationFailure(VoxEditError):
    """The atomic document replace failed; the document is untouched."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Document replace failed: {cause}")


class RouteFormatError(VoxEditError):
    """The model reply had no usable payload."""


class ClassificationError(VoxEditError):
    """No classification provider produced a reply."""
