"""Unit tests for qix configuration."""

import json
import stat

import pytest

from qix.config import Config, parse_properties, validate_project_name
from qix.errors import ValidationFailedError
from qix.storage import Storage


class TestParseProperties:
    """Test cases for the properties file parser."""

    def test_equals_and_colon_lines(self):
        values = parse_properties("log_level = debug\ndate_format: %d/%m/%Y\n")

        assert values == {"log_level": "debug", "date_format": "%d/%m/%Y"}

    def test_comments_and_blanks_skipped(self):
        values = parse_properties("# comment\n\n   \nretention=7\nnot a setting\n")

        assert values == {"backup_retention_days": "7"}

    def test_value_keeps_colons(self):
        assert parse_properties("log_file=C:/logs/qix.log") == {"log_file": "C:/logs/qix.log"}


class TestConfigLoad:
    """Test cases for Config.load."""

    def test_explicit_base_dir(self, tmp_path):
        config = Config.load(base_dir=tmp_path, env={})

        assert config.base_dir == tmp_path.resolve()
        assert config.projects_dir == tmp_path.resolve() / "projects"
        assert config.index_file.name == "index.json"
        assert config.tracking_file.name == "tracking.json"
        assert config.log_level == "info"
        assert config.log_file == tmp_path.resolve() / "qix.log"
        assert config.backup_retention_days == 30

    def test_env_base_dir(self, tmp_path):
        config = Config.load(env={"QIX_DIR": str(tmp_path / "data")})

        assert config.base_dir == (tmp_path / "data").resolve()

    def test_default_base_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))

        config = Config.load(env={})

        assert config.base_dir == (tmp_path / ".qix").resolve()

    def test_config_file_and_env_override(self, tmp_path):
        (tmp_path / "config").write_text("log_level=debug\nlog_file=/tmp/from-file.log\nretention=10\n")

        config = Config.load(base_dir=tmp_path, env={"QIX_LOG_LEVEL": "ERROR"})

        assert config.log_level == "error"
        assert str(config.log_file) == "/tmp/from-file.log"
        assert config.backup_retention_days == 10

    def test_bad_retention(self, tmp_path):
        (tmp_path / "config").write_text("backup_retention_days=soon\n")

        with pytest.raises(ValidationFailedError, match="backup_retention_days"):
            Config.load(base_dir=tmp_path, env={})

    def test_date_format_does_not_change_stored_dates(self, tmp_path, clock):
        (tmp_path / "config").write_text("date_format=%d/%m/%Y\n")
        config = Config.load(base_dir=tmp_path, env={})

        with Storage(config, clock=clock, background_index=False) as storage:
            storage.create_project("demo")
            task = storage.add_task("demo", "Build X")
            entry = storage.add_time_entry("demo", task.id, 1)

        assert config.date_format == "%d/%m/%Y"
        assert entry.date == "2024-03-15"
        assert json.loads(config.project_path("demo").read_text())["tasks"][0]["time_entries"][0]["date"] == "2024-03-15"


class TestDirectories:
    """Test cases for data directory helpers."""

    def test_ensure_dirs(self, tmp_path):
        config = Config.load(base_dir=tmp_path / "qix", env={})
        config.ensure_dirs()

        assert config.projects_dir.is_dir()
        assert config.backup_dir.is_dir()
        assert stat.S_IMODE(config.projects_dir.stat().st_mode) == 0o700

    def test_list_project_names(self, tmp_path):
        config = Config.load(base_dir=tmp_path, env={})
        config.ensure_dirs()
        for name in ("zeta", "alpha"):
            (config.projects_dir / f"{name}.json").write_text("{}")
        (config.projects_dir / "notes.txt").write_text("")

        assert config.list_project_names() == ["alpha", "zeta"]
        assert config.project_exists("alpha")
        assert not config.project_exists("beta")

    def test_list_without_directory(self, tmp_path):
        assert Config.load(base_dir=tmp_path / "missing", env={}).list_project_names() == []


class TestProjectNames:
    """Test cases for project name validation."""

    def test_valid_name_is_stripped(self):
        assert validate_project_name("  demo ") == "demo"

    @pytest.mark.parametrize("name", ["", "   ", "a/b", "a\\b", ".hidden"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationFailedError):
            validate_project_name(name)
