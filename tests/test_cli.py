"""Tests for the command-line interface."""

import json
from pathlib import Path

from click.testing import CliRunner

from binarydeploy.cli import cli


def write_settings(tmp_path: Path, **values) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(values))
    return path


class TestCheckConfig:
    """Tests for the check-config command."""

    def test_valid_descriptor(self, tmp_path: Path):
        descriptor = tmp_path / "deploy.config"
        descriptor.write_text("build_command=make\nrun_command=./server\nport=9000\n")

        result = CliRunner().invoke(cli, ["check-config", str(descriptor)])

        assert result.exit_code == 0
        assert "run_command" in result.output
        assert "9000" in result.output

    def test_missing_run_command(self, tmp_path: Path):
        descriptor = tmp_path / "deploy.config"
        descriptor.write_text("build_command=make\n")

        result = CliRunner().invoke(cli, ["check-config", str(descriptor)])

        assert result.exit_code == 1
        assert "run_command" in result.output

    def test_self_update_descriptor(self, tmp_path: Path):
        descriptor = tmp_path / "deploy.config"
        descriptor.write_text("build_command=make\n")

        result = CliRunner().invoke(cli, ["check-config", "--self-update", str(descriptor)])

        assert result.exit_code == 0


class TestRollbackCommand:
    """Tests for the rollback command."""

    def test_restores_backup(self, tmp_path: Path):
        binary = tmp_path / "agent"
        binary.write_text("new")
        binary.with_name("agent.backup").write_text("old")
        config = write_settings(tmp_path, binary_path=str(binary), self_update_dir=str(tmp_path / "su"))

        result = CliRunner().invoke(cli, ["rollback", "-c", str(config)])

        assert result.exit_code == 0
        assert binary.read_text() == "old"

    def test_no_backup(self, tmp_path: Path):
        binary = tmp_path / "agent"
        binary.write_text("new")
        config = write_settings(tmp_path, binary_path=str(binary))

        result = CliRunner().invoke(cli, ["rollback", "-c", str(config)])

        assert result.exit_code == 1
        assert "Rollback failed" in result.output

    def test_missing_settings_file(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["rollback", "-c", str(tmp_path / "missing.json")])

        assert result.exit_code == 1


def test_version():
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output
