"""
Tests for the command-line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from chathost import __version__
from chathost.cli.commands import app


runner = CliRunner()


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    """Keep config files out of the real home directory."""
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_onboard_writes_config(self, home):
        result = runner.invoke(app, ["onboard", "--owner", "+12345678"])
        assert result.exit_code == 0

        data = json.loads((home / ".chathost" / "config.json").read_text())
        assert data["access"]["owner"] == "12345678@s.whatsapp.net"

    def test_onboard_rejects_bad_owner(self):
        result = runner.invoke(app, ["onboard", "--owner", "not a jid@@"])
        assert result.exit_code == 1

    def test_commands_lists_builtins(self):
        result = runner.invoke(app, ["commands"])
        assert result.exit_code == 0
        assert ".allow" in result.stdout
        assert ".help" in result.stdout
