"""
Tests for the command-line entrypoint.
"""

import json

import pytest

from app import create_parser, main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "database:\n"
        f"  url: sqlite:///{tmp_path / 'ledger.db'}\n"
        "sweep:\n"
        "  interval_seconds: 1\n"
    )
    return str(path)


class TestParser:

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_scheduler_interval(self):
        args = create_parser().parse_args(["--log-format", "json", "scheduler", "--interval", "60"])

        assert args.command == "scheduler"
        assert args.interval == 60.0
        assert args.log_format == "json"


class TestCommands:

    def test_init_db_then_sweep(self, config_file, capsys):
        assert main(["--config", config_file, "init-db"]) == 0
        capsys.readouterr()

        # Logs share stdout with the report
        assert main(["--config", config_file, "--log-level", "CRITICAL", "sweep"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["opened"] == []
        assert report["failed"] == {}

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("alerts:\n  enabled: true\n")

        assert main(["--config", str(path), "init-db"]) == 1
