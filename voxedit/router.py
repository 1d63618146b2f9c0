"""
Classification provider routing.

Picks the LLM provider used to classify utterances based on:
- Which API keys are configured
- Provider health (tracks failures, backs off)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from collections import defaultdict
import threading
import time

from .types import ConfigSnapshot


# Module-level state for failure tracking (persists across router instances)
_PROVIDER_FAILURES: Dict[str, int] = defaultdict(int)
_PROVIDER_BACKOFF_UNTIL: Dict[str, float] = defaultdict(float)
_ROUTER_LOCK = threading.Lock()


GROQ_MODEL = "openai/gpt-oss-120b"
OPENROUTER_MODEL = "openai/gpt-oss-120b"

FAILURES_BEFORE_BACKOFF = 3
MAX_BACKOFF_SECONDS = 300


@dataclass
class ClassificationProvider:
    """An LLM provider that can classify utterances."""
    name: str
    key_field: str          # Config field that holds the API key
    priority: int           # Lower = preferred
    model: str

    def is_available(self, config: ConfigSnapshot) -> bool:
        """Check if this provider's API key is configured."""
        return bool(getattr(config, self.key_field, ""))


PROVIDERS = [
    ClassificationProvider("groq", "groq_api_key", priority=1, model=GROQ_MODEL),
    ClassificationProvider("openrouter", "openrouter_api_key", priority=2, model=OPENROUTER_MODEL),
]


class ClassificationRouter:
    """
    Routes classification requests to the best healthy provider.

    Three consecutive failures put a provider into exponential backoff
    (2^failures seconds, at most five minutes).
    """

    def __init__(self, config: ConfigSnapshot):
        self.config = config
        self._failures = _PROVIDER_FAILURES
        self._backoff_until = _PROVIDER_BACKOFF_UNTIL

    def get_available_providers(self) -> List[ClassificationProvider]:
        """Providers with an API key that aren't backing off."""
        now = time.time()
        with _ROUTER_LOCK:
            return [
                p for p in PROVIDERS
                if p.is_available(self.config) and now >= self._backoff_until.get(p.name, 0)
            ]

    def select_provider(self) -> Optional[ClassificationProvider]:
        """Best available provider, or None if none is configured."""
        available = self.get_available_providers()
        if not available:
            return None
        return min(available, key=lambda p: p.priority)

    def get_fallback(self, exclude: str) -> Optional[ClassificationProvider]:
        """Next best provider, excluding the one that failed."""
        available = [p for p in self.get_available_providers() if p.name != exclude]
        if not available:
            return None
        return min(available, key=lambda p: p.priority)

    def record_failure(self, provider_name: str) -> None:
        with _ROUTER_LOCK:
            self._failures[provider_name] += 1
            failures = self._failures[provider_name]

            if failures >= FAILURES_BEFORE_BACKOFF:
                backoff_seconds = min(2 ** failures, MAX_BACKOFF_SECONDS)
                self._backoff_until[provider_name] = time.time() + backoff_seconds
                print(f"[Router] {provider_name} backing off for {backoff_seconds}s after {failures} failures")

    def record_success(self, provider_name: str) -> None:
        with _ROUTER_LOCK:
            self._failures[provider_name] = 0
            self._backoff_until[provider_name] = 0


def reset_provider_health() -> None:
    """Forget all recorded failures and backoffs."""
    with _ROUTER_LOCK:
        _PROVIDER_FAILURES.clear()
        _PROVIDER_BACKOFF_UNTIL.clear()


def get_provider_status(config: ConfigSnapshot) -> Dict[str, dict]:
    """
    Status of all providers for display.

    Returns dict like:
    {
        "groq": {"configured": True, "model": "openai/gpt-oss-120b"},
        "openrouter": {"configured": False, "model": "openai/gpt-oss-120b"},
    }
    """
    return {
        p.name: {"configured": p.is_available(config), "model": p.model}
        for p in PROVIDERS
    }
