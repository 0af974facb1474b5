"""
Tests for CLI utilities.
"""

from __future__ import annotations

import pytest
import typer
from pydantic import ValidationError

from changeledger.cli.utils import build_config, fail, load_settings, print_dict, print_table
from changeledger.core.errors import ConfigurationError, DuplicateEntryError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("URI", "DATABASE", "LEDGER_COLLECTION", "CATALOG", "ENABLED", "SERVER_SELECTION_TIMEOUT_MS"):
        monkeypatch.delenv(f"CHANGELEDGER_{key}", raising=False)


class TestLoadSettings:
    def test_options_override_environment(self, monkeypatch):
        monkeypatch.setenv("CHANGELEDGER_DATABASE", "from-env")
        assert load_settings(database="from-cli").database == "from-cli"

    def test_none_keeps_environment(self, monkeypatch):
        monkeypatch.setenv("CHANGELEDGER_LEDGER_COLLECTION", "migrations")
        assert load_settings(collection=None).ledger_collection == "migrations"

    def test_invalid_environment_is_configuration_error(self, monkeypatch):
        monkeypatch.setenv("CHANGELEDGER_SERVER_SELECTION_TIMEOUT_MS", "0")
        with pytest.raises(ConfigurationError, match="server_selection_timeout_ms") as excinfo:
            load_settings()
        assert isinstance(excinfo.value.cause, ValidationError)

    def test_build_config(self):
        config = build_config(load_settings(uri="mongodb://h:27017/shop", collection="log"))
        assert config.database == "shop"
        assert config.ledger_collection == "log"


class TestOutput:
    def test_fail_exits_with_status_1(self, capsys):
        with pytest.raises(typer.Exit) as excinfo:
            fail(DuplicateEntryError("001", "ops"))
        assert excinfo.value.exit_code == 1
        assert "INTEGRITY" in capsys.readouterr().err

    def test_print_table_empty(self, capsys):
        print_table([])
        assert "No items." in capsys.readouterr().out

    def test_print_dict_escapes_brackets(self, capsys):
        print_dict({"reason": "ChangeSet[id=1, author=ops]"}, title="Report")
        out = capsys.readouterr().out
        assert "Report" in out
        assert "[id=1, author=ops]" in out
