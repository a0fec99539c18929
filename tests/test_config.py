"""Tests for configuration loading."""

import pytest

from tidywh.common import config as config_module
from tidywh.common.config import DEFAULTS, add_csv_job, load_config, resolve_job_path, save_config


class TestLoadConfig:
    def test_defaults_when_missing(self):
        assert load_config() == DEFAULTS

    def test_defaults_are_not_shared(self):
        load_config()["csvprep"]["jobs"].append({"source": "x"})
        assert load_config()["csvprep"]["jobs"] == []

    def test_file_overrides_merge(self, isolated_config):
        isolated_config.write_text("connection: prod\nquery:\n  timeout: 30\n")
        config = load_config()
        assert config["connection"] == "prod"
        assert config["query"] == {"timeout": 30, "poll_interval": 0.5}

    def test_environment_overrides_file(self, isolated_config, monkeypatch):
        isolated_config.write_text("connection: prod\n")
        monkeypatch.setenv("TIDYWH_CONNECTION", "dev")
        monkeypatch.setenv("TIDYWH_QUERY_TIMEOUT", "12.5")
        config = load_config()
        assert config["connection"] == "dev"
        assert config["query"]["timeout"] == 12.5

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "ENV_PATH", tmp_path / ".env")
        (tmp_path / ".env").write_text('# comment\nTIDYWH_CONNECTION="staging"\n')
        assert load_config()["connection"] == "staging"

    def test_invalid_if_exists(self, isolated_config):
        isolated_config.write_text("upload:\n  if_exists: merge\n")
        with pytest.raises(ValueError):
            load_config()

    def test_not_a_mapping(self, isolated_config):
        isolated_config.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config()


class TestJobs:
    def test_add_and_replace(self):
        config = load_config()
        add_csv_job(config, "csv/stores.csv", "csv/store_mod.csv", "icccc")
        add_csv_job(config, "csv/sales.csv", "csv/sales_mod.csv", "Tliiciciciciiccid")
        add_csv_job(config, "csv/stores.csv", "csv/stores_v2.csv", "iccc_")

        jobs = config["csvprep"]["jobs"]
        assert [job["source"] for job in jobs] == ["csv/stores.csv", "csv/sales.csv"]
        assert jobs[0]["destination"] == "csv/stores_v2.csv"

    def test_save_and_reload(self, isolated_config):
        config = load_config()
        add_csv_job(config, "csv/stores.csv", "csv/store_mod.csv", "icccc")
        save_config(config)

        assert isolated_config.read_text().startswith("# tidywh configuration")
        assert load_config()["csvprep"]["jobs"] == [
            {"source": "csv/stores.csv", "destination": "csv/store_mod.csv", "col_types": "icccc"}
        ]

    def test_resolve_job_path(self, tmp_path):
        assert resolve_job_path("csv/a.csv", tmp_path) == tmp_path / "csv" / "a.csv"
        assert resolve_job_path(str(tmp_path / "b.csv")) == tmp_path / "b.csv"
