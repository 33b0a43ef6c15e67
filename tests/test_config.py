"""Tests for gtdash.config."""

import json

import pytest

from gtdash.config import DashboardConfig, PathsConfig

ENV_VARS = ("GT_BASE_PATH", "BEADS_PATH", "GT_BIN", "BD_BIN", "GTDASH_HOST", "GTDASH_PORT")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoad:
    def test_defaults_when_missing(self, tmp_path):
        cfg = DashboardConfig.load(tmp_path / "missing.json")
        assert cfg.paths.gt_bin == "gt"
        assert cfg.server.port == 3001
        assert cfg.timeouts.nudge == 10.0
        assert cfg.limits.status_cache_ttl == 5.0

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "paths": {"gt_base_path": "/home/gt", "bogus": 1},
            "timeouts": {"rig_add": 300},
        }))
        cfg = DashboardConfig.load(path)
        assert cfg.paths.gt_base_path == "/home/gt"
        assert cfg.timeouts.rig_add == 300
        assert not hasattr(cfg.paths, "bogus")

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"paths": {"gt_base_path": "/from/file"}}))
        monkeypatch.setenv("GT_BASE_PATH", "/from/env")
        monkeypatch.setenv("GTDASH_PORT", "4000")
        cfg = DashboardConfig.load(path)
        assert cfg.paths.gt_base_path == "/from/env"
        assert cfg.server.port == 4000

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        cfg = DashboardConfig()
        cfg.paths.beads_path = "/town/.beads"
        cfg.limits.sent_mail_limit = 50
        cfg.save(path)
        again = DashboardConfig.load(path)
        assert again.to_dict() == cfg.to_dict()


class TestSetValue:
    def test_coerces_to_field_type(self):
        cfg = DashboardConfig()
        cfg.set_value("timeouts.nudge", "15")
        cfg.set_value("server.port", "8080")
        cfg.set_value("paths.gt_bin", "/usr/local/bin/gt")
        assert cfg.timeouts.nudge == 15.0
        assert isinstance(cfg.timeouts.nudge, float)
        assert cfg.server.port == 8080
        assert cfg.paths.gt_bin == "/usr/local/bin/gt"

    @pytest.mark.parametrize("key", ["nudge", "timeouts.nope", "nowhere.nudge"])
    def test_unknown_key(self, key):
        with pytest.raises(KeyError):
            DashboardConfig().set_value(key, "1")

    def test_bad_number(self):
        with pytest.raises(ValueError):
            DashboardConfig().set_value("server.port", "eighty")


class TestPaths:
    def test_beads_path_resolution(self):
        assert PathsConfig().resolved_beads_path() == ""
        assert PathsConfig(gt_base_path="/town").resolved_beads_path() == "/town/.beads"
        assert PathsConfig(gt_base_path="/town", beads_path="/b").resolved_beads_path() == "/b"
