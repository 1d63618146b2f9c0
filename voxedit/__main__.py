"""
Main entry point for VoxEdit.

Run with: python -m voxedit path/to/file.py
"""

import argparse
import re
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .apply import DiffPresenter, FileDocument
from .audio import MicStream
from .classify import classify_utterance, strip_markdown_code_fence
from .config import Config, LISTENING_PROFILES
from .errors import (
    ClassificationError,
    DocumentMutationFailure,
    ListeningCancelled,
    RouteFormatError,
    TranscriptionTransportError,
)
from .metrics import MetricsWriter, get_metrics, log_apply, log_classification
from .providers.deepgram import DeepgramChannel
from .router import get_provider_status
from .session import SessionManager
from .types import ConfigSnapshot


PAUSE_RE = re.compile(r"(^|\b)(pause|stop listening)(\b|$)", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")


# Global state
config: Config
metrics: Optional[MetricsWriter] = None
session_manager: Optional[SessionManager] = None
presenter: Optional[DiffPresenter] = None


def _print_command(command: str) -> None:
    print(f"[Command] {command}")


def _is_thank_you(answer: str) -> bool:
    return _NON_WORD_RE.sub("", answer.lower()).strip() == "thank you"


def _print_answer(question: str, answer: str) -> None:
    stamp = datetime.now().strftime("%H:%M:%S")
    print(f"\n[{stamp}] Q: {question}")
    print(answer.strip())
    print("-" * 40)


def handle_utterance(
    utterance: str,
    document: FileDocument,
    presenter: DiffPresenter,
    config: ConfigSnapshot,
    metrics: Optional[MetricsWriter] = None,
    on_command: Callable[[str], None] = _print_command,
    on_answer: Callable[[str, str], None] = _print_answer,
) -> bool:
    """
    Route one finalized utterance.

    Returns:
        False when the user asked to stop listening, True otherwise
    """
    text = utterance.strip()
    if not text:
        return True

    if PAUSE_RE.search(text):
        print("[Main] Pause requested")
        return False

    print(f"[Main] Heard: {text}")

    served = {}

    def on_metadata(provider: str, latency_ms: float) -> None:
        served.update(provider=provider, latency_ms=latency_ms)

    try:
        route = classify_utterance(text, document.get_text(), document.name, config, on_metadata=on_metadata)
    except (ClassificationError, RouteFormatError) as e:
        print(f"[Main] Could not classify: {e}")
        return True

    if metrics:
        log_classification(
            metrics,
            route_type=route.type,
            provider=served.get("provider", "none"),
            latency_ms=served.get("latency_ms", 0.0),
        )

    if route.type == "modification":
        new_text = strip_markdown_code_fence(route.payload)
        try:
            diff = presenter.apply(document, new_text)
        except DocumentMutationFailure as e:
            print(f"[Main] Edit not applied: {e}")
            return True
        if metrics:
            log_apply(
                metrics,
                document=document.name,
                added=len(diff.added),
                removed=len(diff.removed),
                moved=len(diff.moved),
            )
    elif route.type == "command":
        on_command(route.payload)
    elif _is_thank_you(route.payload):
        print("[Main] (thank you)")
    else:
        on_answer(text, route.payload)

    return True


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="voxedit", description="Edit a file by voice.")
    parser.add_argument("file", type=Path, help="file to edit")
    parser.add_argument("--profile", choices=sorted(LISTENING_PROFILES), help="listening profile")
    parser.add_argument("--trailing-silence-ms", type=int, help="pause (ms) that ends an instruction")
    parser.add_argument("--commands-only", action="store_true", help="treat every utterance as a command")
    return parser.parse_args(argv)


def _channel_factory(snapshot: ConfigSnapshot) -> DeepgramChannel:
    return DeepgramChannel(
        api_key=snapshot.deepgram_api_key,
        model=snapshot.stt_model,
        sample_rate=snapshot.sample_rate,
        trailing_silence_ms=snapshot.trailing_silence_ms,
        keyterms=snapshot.keyterms,
    )


def _mic_factory(snapshot: ConfigSnapshot) -> MicStream:
    return MicStream(sample_rate=snapshot.sample_rate, device=snapshot.input_device)


def _on_interim(text: str) -> None:
    print(f"\r... {text}", end="", flush=True)


def main(argv=None) -> int:
    """Main entry point."""
    global config, metrics, session_manager, presenter

    args = _parse_args(argv)

    config = Config.load()
    if args.profile:
        config.use_profile(args.profile)
    if args.trailing_silence_ms is not None:
        config.apply({"trailing_silence_ms": args.trailing_silence_ms})
    if args.commands_only:
        config.commands_only = True

    if not config.deepgram_api_key:
        print("DEEPGRAM_API_KEY is not set")
        return 1

    print("VoxEdit starting...")
    print(f"  File: {args.file}")
    print(f"  Trailing silence: {config.trailing_silence_ms}ms")
    for name, status in get_provider_status(config.snapshot()).items():
        print(f"  {name}: {'configured' if status['configured'] else 'not configured'}")

    metrics = get_metrics(config.metrics_file)
    presenter = DiffPresenter(dwell_seconds=config.dwell_ms / 1000)
    session_manager = SessionManager(
        config_snapshot_fn=config.snapshot,
        channel_factory=_channel_factory,
        mic_factory=_mic_factory,
        metrics=metrics,
    )
    document = FileDocument(args.file)

    signal.signal(signal.SIGTERM, _signal_handler)

    print("Ready! Speak an instruction. Say \"pause\" to stop.")

    try:
        while True:
            session = session_manager.start_session(on_interim=_on_interim)
            try:
                utterance = session.listen()
            except TranscriptionTransportError as e:
                print(f"\n[Main] {e}")
                time.sleep(1.0)
                continue
            except ListeningCancelled:
                continue
            print()

            if not handle_utterance(utterance, document, presenter, session.config_snapshot, metrics):
                break
    except KeyboardInterrupt:
        pass
    finally:
        shutdown()

    return 0


def shutdown() -> None:
    """Clean shutdown."""
    print("\nShutting down...")

    if session_manager:
        session_manager.stop_session()
    if presenter:
        presenter.shutdown()
    if metrics:
        metrics.shutdown()

    print("Goodbye!")


def _signal_handler(signum, frame):
    """Handle SIGTERM."""
    raise KeyboardInterrupt


if __name__ == "__main__":
    sys.exit(main())
