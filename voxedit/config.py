"""
Configuration management with immutable snapshots.

Loads from: environment variables > settings.json > defaults
Provides immutable snapshots for session isolation.
"""

from pathlib import Path
from typing import Dict, List, Optional
import json
import os

from .reconciler import clamp_trailing_silence
from .types import ConfigSnapshot


# Defaults
DEFAULT_CONFIG = {
    # Listening
    "trailing_silence_ms": 1000,
    "sample_rate": 16000,
    "input_device": "",
    "stt_model": "nova-3",
    "keyterms": [],

    # Presentation
    "dwell_ms": 3500,

    # Classification
    "prompt": "",
    "commands_only": False,
    "reasoning_effort": "low",
    "max_context_chars": 100000,
}

# Named trailing-silence presets (ms of pause that ends an instruction)
LISTENING_PROFILES: Dict[str, int] = {
    "conservative": 3000,
    "balanced": 2000,
    "sensitive": 1000,
}

API_KEY_FIELDS = {
    "GROQ_API_KEY": "groq_api_key",
    "OPENROUTER_API_KEY": "openrouter_api_key",
    "DEEPGRAM_API_KEY": "deepgram_api_key",
}


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class Config:
    """
    Single source of truth for all settings.

    Usage:
        config = Config.load()
        snapshot = config.snapshot()  # Immutable copy for session
    """

    def __init__(self, data_dir: Optional[Path] = None):
        # Listening
        self.trailing_silence_ms: int = 1000
        self.sample_rate: int = 16000
        self.input_device: str = ""
        self.stt_model: str = "nova-3"
        self.keyterms: List[str] = []

        # Presentation
        self.dwell_ms: int = 3500

        # Classification
        self.prompt: str = ""
        self.commands_only: bool = False
        self.reasoning_effort: str = "low"
        self.max_context_chars: int = 100000

        # API Keys
        self.groq_api_key: str = ""
        self.openrouter_api_key: str = ""
        self.deepgram_api_key: str = ""

        # Paths
        self.data_dir: Path = data_dir or Path.home() / ".voxedit"
        self.metrics_file: Path = self.data_dir / "metrics.jsonl"
        self.settings_file: Path = self.data_dir / "settings.json"
        self.env_file: Path = self.data_dir / ".env"

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from all sources."""
        config = cls(data_dir)
        config._ensure_data_dir()
        config._load_env()
        config._load_settings()

        # Environment wins over settings.json
        config.reasoning_effort = os.getenv("VOXEDIT_REASONING_EFFORT", config.reasoning_effort)
        return config

    def _ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _load_env(self) -> None:
        """Load API keys from .env files and environment."""
        # .env in the working directory first, then the data dir
        env_file = Path(".env")
        if env_file.exists():
            self._parse_env_file(env_file)

        if self.env_file.exists():
            self._parse_env_file(self.env_file)

        # Environment variables override file values
        for env_name, attr in API_KEY_FIELDS.items():
            setattr(self, attr, os.getenv(env_name, getattr(self, attr)))

    def _parse_env_file(self, env_file: Path) -> None:
        """Parse a .env file and extract API keys."""
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("'\"")

                    if key in API_KEY_FIELDS:
                        setattr(self, API_KEY_FIELDS[key], value)
        except Exception as e:
            print(f"[Config] Error loading {env_file}: {e}")

    def _load_settings(self) -> None:
        """Load settings from settings.json."""
        # Project root first
        project_settings = Path("settings.json")
        if project_settings.exists():
            self._apply_settings_file(project_settings)

        # Then ~/.voxedit/settings.json (overrides)
        if self.settings_file.exists():
            self._apply_settings_file(self.settings_file)

    def _apply_settings_file(self, settings_file: Path) -> None:
        """Apply settings from a JSON file."""
        try:
            with open(settings_file) as f:
                data = json.load(f)
            self.apply(data)
        except Exception as e:
            print(f"[Config] Error loading {settings_file}: {e}")

    def apply(self, data: dict) -> None:
        """Apply known settings with type coercion. Unknown keys are ignored."""
        for key, default in DEFAULT_CONFIG.items():
            if key not in data:
                continue
            value = data[key]
            if isinstance(default, bool):
                value = _coerce_bool(value)
            elif isinstance(default, list):
                value = [str(v) for v in value]
            else:
                value = type(default)(value)
            setattr(self, key, value)

        self.trailing_silence_ms = clamp_trailing_silence(self.trailing_silence_ms)

    def use_profile(self, profile: str) -> None:
        """Switch to a named listening profile."""
        if profile not in LISTENING_PROFILES:
            raise ValueError(f"Unknown listening profile: {profile}")
        self.trailing_silence_ms = LISTENING_PROFILES[profile]

    def save_settings(self) -> None:
        """Save current settings to settings.json."""
        data = {key: getattr(self, key) for key in DEFAULT_CONFIG}

        self._ensure_data_dir()
        with open(self.settings_file, "w") as f:
            json.dump(data, f, indent=2)

    def snapshot(self) -> ConfigSnapshot:
        """Return immutable copy for session isolation."""
        return ConfigSnapshot(
            trailing_silence_ms=clamp_trailing_silence(self.trailing_silence_ms),
            sample_rate=self.sample_rate,
            input_device=self.input_device,
            stt_model=self.stt_model,
            dwell_ms=self.dwell_ms,
            prompt=self.prompt,
            commands_only=self.commands_only,
            reasoning_effort=self.reasoning_effort,
            max_context_chars=self.max_context_chars,
            groq_api_key=self.groq_api_key,
            openrouter_api_key=self.openrouter_api_key,
            deepgram_api_key=self.deepgram_api_key,
            keyterms=list(self.keyterms),
        )
