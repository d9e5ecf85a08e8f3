"""
Unit tests for configuration loading and validation.
"""

import pytest

from automix.config import Config, ConfigError


class TestDefaults:
    """Defaults fill in anything missing."""

    def test_defaults_validate(self):
        """Default config passes validation."""
        config = Config.defaults()
        assert config["mix"]["default_track_count"] == 6
        assert config["render"]["binary"] == "ffmpeg"

    def test_defaults_are_copies(self):
        """Mutating one config does not leak into the next."""
        first = Config.defaults()
        first.data["mix"]["default_track_count"] = 42
        assert Config.defaults()["mix"]["default_track_count"] == 6

    def test_missing_section_filled(self):
        """A config without sections gets every default section."""
        config = Config({"config_version": "1.0"})
        assert config["jobs"]["max_workers"] == 2
        assert config["playlist"]["api_base"].startswith("https://")

    def test_missing_param_filled(self):
        """A partial section keeps its values and gains the rest."""
        config = Config({"render": {"quality": "low"}})
        assert config["render"]["quality"] == "low"
        assert config["render"]["timeout_seconds"] == 1800

    def test_get_with_default(self):
        config = Config.defaults()
        assert config.get("llm", "model") == "claude-sonnet-4-5"
        assert config.get("llm", "nope", "fallback") == "fallback"


class TestBounds:
    """Out-of-bounds values are rejected."""

    def test_out_of_bounds(self):
        with pytest.raises(ConfigError, match="out of bounds"):
            Config({"jobs": {"max_workers": 64}})

    def test_non_numeric(self):
        with pytest.raises(ConfigError, match="must be numeric"):
            Config({"render": {"timeout_seconds": "slow"}})

    def test_bool_is_not_numeric(self):
        with pytest.raises(ConfigError):
            Config({"selection": {"jitter": True}})

    def test_inverted_bpm_range(self):
        with pytest.raises(ConfigError, match="default_bpm_min"):
            Config({"mix": {"default_bpm_min": 140, "default_bpm_max": 120}})


class TestLoad:
    """Loading from TOML files."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config.load(str(tmp_path / "absent.toml"))
        assert config["mix"]["default_bpm_min"] == 115

    def test_load_file(self, tmp_path):
        path = tmp_path / "automix.toml"
        path.write_text('[mix]\ndefault_track_count = 12\n\n[render]\noutput_format = "flac"\n')
        config = Config.load(str(path))
        assert config["mix"]["default_track_count"] == 12
        assert config["render"]["output_format"] == "flac"

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env.toml"
        path.write_text("[jobs]\nmax_workers = 4\n")
        monkeypatch.setenv("AUTOMIX_CONFIG_PATH", str(path))
        assert Config.load()["jobs"]["max_workers"] == 4

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[mix\ndefault_track_count = ")
        with pytest.raises(ConfigError, match="Failed to load config"):
            Config.load(str(path))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
