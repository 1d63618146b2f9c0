"""
Apply a full-text rewrite to a document and flash the diff.

The document is replaced in one atomic edit, then added, removed and
moved lines are highlighted for a short dwell window. Highlights are
released when the window ends or when the next apply on the same
document supersedes them, whichever comes first.
"""

import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .diff import compute_diff, split_lines
from .errors import DocumentMutationFailure
from .types import Decoration, DiffResult


# Decoration kinds
ADDED = "added"
REMOVED = "removed"
MOVED = "moved"
DECORATION_KINDS = (ADDED, REMOVED, MOVED)

DEFAULT_DWELL_SECONDS = 3.5

_LINE_BREAK = re.compile(r"\r?\n")

TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]


class Document(ABC):
    """
    Host document being edited.

    Subclasses must implement text access, an atomic replace, and a
    decoration API with explicit acquire (create) and release (dispose).
    """

    name: str = "untitled"

    @abstractmethod
    def get_text(self) -> str:
        """Return the full document text."""
        pass

    @abstractmethod
    def replace_all(self, text: str) -> None:
        """
        Replace the whole document. All or nothing.

        Raises on failure, leaving the document untouched.
        """
        pass

    @abstractmethod
    def create_decoration_type(self, kind: str) -> int:
        """Acquire a decoration resource and return its handle."""
        pass

    @abstractmethod
    def set_decorations(self, handle: int, decorations: List[Decoration]) -> None:
        """Show `decorations` for a handle, replacing what it showed before."""
        pass

    @abstractmethod
    def dispose_decoration_type(self, handle: int) -> None:
        """Release a decoration resource and anything it shows."""
        pass

    def line_count(self) -> int:
        """Number of lines. An empty document has none."""
        return len(split_lines(self.get_text()))


class TextBuffer(Document):
    """
    In-memory document.

    Tracks live decoration resources so callers can check nothing leaks.
    """

    def __init__(self, text: str = "", name: str = "untitled"):
        self.name = name
        self._text = text
        self._decorations: Dict[int, Tuple[str, List[Decoration]]] = {}
        self._next_handle = 1
        self._lock = threading.Lock()

    def get_text(self) -> str:
        with self._lock:
            return self._text

    def replace_all(self, text: str) -> None:
        with self._lock:
            self._text = text

    def create_decoration_type(self, kind: str) -> int:
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._decorations[handle] = (kind, [])
            return handle

    def set_decorations(self, handle: int, decorations: List[Decoration]) -> None:
        with self._lock:
            if handle not in self._decorations:
                raise KeyError(f"Unknown decoration handle: {handle}")
            kind, _ = self._decorations[handle]
            self._decorations[handle] = (kind, list(decorations))

    def dispose_decoration_type(self, handle: int) -> None:
        with self._lock:
            self._decorations.pop(handle, None)

    @property
    def live_decoration_types(self) -> int:
        """Number of acquired, not yet disposed, decoration resources."""
        with self._lock:
            return len(self._decorations)

    def visible_decorations(self) -> Dict[str, List[Decoration]]:
        """Currently shown decorations grouped by kind."""
        with self._lock:
            shown: Dict[str, List[Decoration]] = {}
            for kind, decorations in self._decorations.values():
                if decorations:
                    shown.setdefault(kind, []).extend(decorations)
            return shown


class FileDocument(TextBuffer):
    """
    A text file on disk.

    Replacement writes a temp file next to the target and renames it over
    the original, so the file is either fully rewritten or untouched.
    A file that uses CRLF keeps CRLF. Decorations are printed to the console.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        text = ""
        if self.path.exists():
            # newline="" keeps CRLF untranslated
            with open(self.path, encoding="utf-8", newline="") as f:
                text = f.read()
        self.newline = "\r\n" if "\r\n" in text else "\n"
        super().__init__(text, name=self.path.name)

    def replace_all(self, text: str) -> None:
        if self.newline == "\r\n":
            text = _LINE_BREAK.sub("\r\n", text)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            if self.path.exists():
                os.chmod(tmp_name, self.path.stat().st_mode)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        super().replace_all(text)

    def set_decorations(self, handle: int, decorations: List[Decoration]) -> None:
        super().set_decorations(handle, decorations)
        for decoration in decorations:
            span = f"L{decoration.start_line + 1}"
            if decoration.end_line != decoration.start_line:
                span += f"-L{decoration.end_line + 1}"
            label = decoration.label or "added"
            print(f"[Apply] {self.name} {span}: {label}")


def build_decorations(diff: DiffResult, line_count: int) -> Dict[str, List[Decoration]]:
    """
    Turn a diff into per-kind decorations, clamped to the document.

    Args:
        diff: Diff computed against the pre-replace text
        line_count: Lines in the document after replacement (> 0)
    """
    last_line = max(0, line_count - 1)

    def clamp(line: int) -> int:
        return max(0, min(line, last_line))

    added: List[Decoration] = []
    for start, end in diff.added:
        if start > end:
            continue
        added.append(Decoration(clamp(start), clamp(end)))

    removed: List[Decoration] = []
    for span in diff.removed:
        if span.count <= 0:
            continue
        line = clamp(span.anchor)
        noun = "line" if span.count == 1 else "lines"
        removed.append(Decoration(line, line, label=f"{span.count} {noun} removed"))

    moved: List[Decoration] = []
    for span in diff.moved:
        if span.start > span.end:
            continue
        label = f"moved from L{span.from_start + 1}-L{span.from_end + 1}"
        moved.append(Decoration(clamp(span.start), clamp(span.end), label=label))

    return {ADDED: added, REMOVED: removed, MOVED: moved}


class HighlightSession:
    """
    The three decoration resources owned by one apply.

    `release()` is idempotent and never raises.
    """

    def __init__(self, document: Document):
        self.document = document
        self._handles: Dict[str, int] = {}
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        with self._lock:
            return self._released

    def acquire(self, decorations: Dict[str, List[Decoration]]) -> None:
        """Create one decoration type per kind and show its ranges."""
        try:
            for kind in DECORATION_KINDS:
                handle = self.document.create_decoration_type(kind)
                with self._lock:
                    self._handles[kind] = handle
                self.document.set_decorations(handle, decorations.get(kind, []))
        except Exception:
            self.release()
            raise

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            handles = list(self._handles.values())
            self._handles.clear()

        for handle in handles:
            try:
                self.document.set_decorations(handle, [])
            except Exception as e:
                print(f"[Apply] Error clearing decorations: {e}")
            finally:
                try:
                    self.document.dispose_decoration_type(handle)
                except Exception as e:
                    print(f"[Apply] Error disposing decorations: {e}")


class DiffPresenter:
    """
    Replaces document text and shows the diff for a dwell window.

    Callers must serialize applies per document; the presenter does not
    lock the document itself.

    Usage:
        presenter = DiffPresenter(dwell_seconds=3.5)
        diff = presenter.apply(document, new_text)
    """

    def __init__(
        self,
        dwell_seconds: float = DEFAULT_DWELL_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.dwell_seconds = dwell_seconds
        self._timer_factory = timer_factory
        # id(document) -> (document, highlight session, dwell timer)
        self._active: Dict[int, Tuple[Document, HighlightSession, object]] = {}
        self._lock = threading.Lock()

    def apply(self, document: Document, new_text: str) -> DiffResult:
        """
        Replace the document with `new_text` and highlight the changes.

        Returns:
            The diff between the old and new text

        Raises:
            DocumentMutationFailure: the replace failed; nothing was decorated
        """
        diff = compute_diff(document.get_text(), new_text)

        # Supersede any highlights still dwelling on this document
        self.release(document)

        try:
            document.replace_all(new_text)
        except DocumentMutationFailure:
            raise
        except Exception as e:
            raise DocumentMutationFailure(e) from e

        line_count = document.line_count()
        if line_count == 0:
            return diff

        # The text is already replaced; a failed highlight only loses the visuals
        session = HighlightSession(document)
        try:
            session.acquire(build_decorations(diff, line_count))
        except Exception as e:
            print(f"[Apply] Error showing decorations for {document.name}: {e}")
            return diff

        key = id(document)
        timer = self._timer_factory(self.dwell_seconds, lambda: self._expire(key, session))
        timer.daemon = True
        with self._lock:
            self._active[key] = (document, session, timer)
        timer.start()

        print(
            f"[Apply] {document.name}: +{len(diff.added)} added, "
            f"-{len(diff.removed)} removed, {len(diff.moved)} moved"
        )
        return diff

    def release(self, document: Document) -> None:
        """Release this document's highlights now, cancelling the dwell timer."""
        with self._lock:
            entry = self._active.pop(id(document), None)
        if entry is None:
            return
        _, session, timer = entry
        timer.cancel()
        session.release()

    def active_session(self, document: Document) -> Optional[HighlightSession]:
        """The highlight session still dwelling on `document`, if any."""
        with self._lock:
            entry = self._active.get(id(document))
        return entry[1] if entry else None

    def shutdown(self) -> None:
        """Release every outstanding highlight."""
        with self._lock:
            entries = list(self._active.values())
            self._active.clear()
        for _, session, timer in entries:
            timer.cancel()
            session.release()

    def _expire(self, key: int, session: HighlightSession) -> None:
        """Dwell timer fired."""
        with self._lock:
            entry = self._active.get(key)
            if entry is not None and entry[1] is session:
                del self._active[key]
        session.release()
