"""
Tests for Config loading and snapshots.
"""

import json

import pytest


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Run from an empty directory with no API keys in the environment."""
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    for name in ("GROQ_API_KEY", "OPENROUTER_API_KEY", "DEEPGRAM_API_KEY", "VOXEDIT_REASONING_EFFORT"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "data"


class TestConfig:
    """Tests for Config."""

    def test_defaults(self, clean_env):
        from voxedit.config import Config

        config = Config.load(clean_env)

        assert config.trailing_silence_ms == 1000
        assert config.dwell_ms == 3500
        assert config.stt_model == "nova-3"
        assert config.commands_only is False
        assert config.reasoning_effort == "low"
        assert config.max_context_chars == 100000
        assert config.deepgram_api_key == ""
        assert clean_env.is_dir()

    def test_settings_file_is_applied(self, clean_env):
        from voxedit.config import Config

        clean_env.mkdir()
        (clean_env / "settings.json").write_text(json.dumps({
            "trailing_silence_ms": 2500,
            "commands_only": "yes",
            "keyterms": ["useEffect", 42],
            "unknown_setting": True,
        }))

        config = Config.load(clean_env)

        assert config.trailing_silence_ms == 2500
        assert config.commands_only is True
        assert config.keyterms == ["useEffect", "42"]

    def test_user_settings_override_project_settings(self, clean_env):
        from voxedit.config import Config

        (clean_env.parent / "work" / "settings.json").write_text(json.dumps({"dwell_ms": 1000, "prompt": "p"}))
        clean_env.mkdir()
        (clean_env / "settings.json").write_text(json.dumps({"dwell_ms": 2000}))

        config = Config.load(clean_env)

        assert config.dwell_ms == 2000
        assert config.prompt == "p"

    def test_trailing_silence_is_clamped(self, clean_env):
        from voxedit.config import Config

        config = Config(clean_env)
        config.apply({"trailing_silence_ms": 10})

        assert config.trailing_silence_ms == 100

    def test_bad_settings_file_is_ignored(self, clean_env, capsys):
        from voxedit.config import Config

        clean_env.mkdir()
        (clean_env / "settings.json").write_text("{not json")

        config = Config.load(clean_env)

        assert config.trailing_silence_ms == 1000
        assert "[Config] Error loading" in capsys.readouterr().out

    def test_env_file_and_environment(self, clean_env, monkeypatch):
        """Environment variables win over .env values."""
        from voxedit.config import Config

        clean_env.mkdir()
        (clean_env / ".env").write_text(
            "# keys\nGROQ_API_KEY='gsk-file'\nDEEPGRAM_API_KEY=dg-file\nOTHER=ignored\n"
        )
        monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-env")
        monkeypatch.setenv("VOXEDIT_REASONING_EFFORT", "high")

        config = Config.load(clean_env)

        assert config.groq_api_key == "gsk-file"
        assert config.deepgram_api_key == "dg-env"
        assert config.reasoning_effort == "high"

    def test_reasoning_effort_env_beats_settings(self, clean_env, monkeypatch):
        from voxedit.config import Config

        clean_env.mkdir()
        (clean_env / "settings.json").write_text(json.dumps({"reasoning_effort": "medium"}))
        monkeypatch.setenv("VOXEDIT_REASONING_EFFORT", "high")

        assert Config.load(clean_env).reasoning_effort == "high"

    def test_profiles(self, clean_env):
        from voxedit.config import Config

        config = Config(clean_env)
        config.use_profile("conservative")
        assert config.trailing_silence_ms == 3000

        config.use_profile("sensitive")
        assert config.trailing_silence_ms == 1000

        with pytest.raises(ValueError):
            config.use_profile("turbo")

    def test_save_settings(self, clean_env):
        from voxedit.config import Config

        config = Config(clean_env)
        config.dwell_ms = 1500
        config.groq_api_key = "secret"
        config.save_settings()

        saved = json.loads((clean_env / "settings.json").read_text())
        assert saved["dwell_ms"] == 1500
        assert "groq_api_key" not in saved

    def test_snapshot_is_isolated(self, clean_env):
        """Later config changes don't leak into a taken snapshot."""
        from voxedit.config import Config

        config = Config(clean_env)
        config.keyterms = ["foo"]
        snap = config.snapshot()

        config.trailing_silence_ms = 3000
        config.keyterms.append("bar")

        assert snap.trailing_silence_ms == 1000
        assert snap.keyterms == ["foo"]
