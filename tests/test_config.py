from pathlib import Path

import pytest
import yaml

from giveaway_engine.config import ConfigError, load_config
from giveaway_engine.durations import DAY_MS, MINUTE_MS


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadConfig:
    def test_minimal_config_uses_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, {"token": "abc", "application_id": "42"}))

        assert config.token == "abc"
        assert config.application_id == 42
        assert config.data_dir == Path("data")
        assert config.logging.level == "INFO"
        assert config.logging.logger_channel_id is None
        assert config.giveaway_defaults.duration_ms == 60 * MINUTE_MS
        assert config.giveaway_defaults.max_duration_ms == 30 * DAY_MS
        assert config.giveaway_defaults.max_winners == 25
        assert config.permissions.admin_roles == []
        assert config.permissions.development_guild_id is None

    def test_full_config(self, tmp_path):
        config = load_config(
            _write(
                tmp_path,
                {
                    "token": "abc",
                    "application_id": 42,
                    "data_dir": "/var/lib/giveaways",
                    "logging": {"level": "debug", "logger_channel_id": 77},
                    "giveaway_defaults": {
                        "duration_minutes": 15,
                        "max_duration_days": 7,
                        "max_winners": 10,
                    },
                    "permissions": {"admin_roles": ["11", 12], "development_guild_id": 99},
                },
            )
        )

        assert config.data_dir == Path("/var/lib/giveaways")
        assert config.logging.level == "DEBUG"
        assert config.logging.logger_channel_id == 77
        assert config.giveaway_defaults.duration_ms == 15 * MINUTE_MS
        assert config.giveaway_defaults.max_duration_ms == 7 * DAY_MS
        assert config.permissions.admin_roles == [11, 12]
        assert config.permissions.development_guild_id == 99

    def test_token_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GIVEAWAY_TOKEN", "from-env")
        config = load_config(
            _write(tmp_path, {"token": "${GIVEAWAY_TOKEN}", "application_id": 1})
        )
        assert config.token == "from-env"

    def test_unset_environment_reference(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GIVEAWAY_TOKEN", raising=False)
        with pytest.raises(ConfigError, match="GIVEAWAY_TOKEN"):
            load_config(_write(tmp_path, {"token": "${GIVEAWAY_TOKEN}", "application_id": 1}))

    @pytest.mark.parametrize(
        "data",
        [
            {"application_id": 1},
            {"token": "abc"},
            {"token": "  ", "application_id": 1},
            {"token": "abc", "application_id": "not-a-number"},
            {"token": "abc", "application_id": 1, "logging": {"logger_channel_id": "x"}},
            {"token": "abc", "application_id": 1, "giveaway_defaults": {"max_winners": 0}},
            {"token": "abc", "application_id": 1, "giveaway_defaults": {"duration_minutes": True}},
            {"token": "abc", "application_id": 1, "permissions": {"admin_roles": "11"}},
            {"token": "abc", "application_id": 1, "permissions": {"admin_roles": ["x"]}},
            {"token": "abc", "application_id": 1, "permissions": {"development_guild_id": -5}},
        ],
    )
    def test_invalid_values_raise(self, tmp_path, data):
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, data))

    def test_missing_file_and_non_mapping_root(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.yaml")
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path)
