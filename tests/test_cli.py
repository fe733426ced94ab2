"""Tests for the command-line interface, run against the mock battery."""

import json

from chargeguard import cli


class TestCli:
    def test_status_json(self, capsys):
        assert cli.main(["--mock", "--json", "status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["battery"] == "MOCK0"
        assert status["start_threshold"] == 60
        assert status["end_threshold"] == 80
        assert status["force_discharge"] is False

    def test_default_command_is_status(self, capsys):
        assert cli.main(["--mock"]) == 0
        out = capsys.readouterr().out
        assert "Mock battery" in out
        assert "60-80%" in out

    def test_set_thresholds(self, capsys):
        assert cli.main(["--mock", "--json", "set", "70", "90"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert (status["start_threshold"], status["end_threshold"]) == (70, 90)

    def test_set_invalid_thresholds(self, capsys):
        assert cli.main(["--mock", "set", "90", "70"]) == 1
        assert "Could not set thresholds" in capsys.readouterr().out

    def test_force_discharge(self, capsys):
        assert cli.main(["--mock", "--json", "force-discharge", "on"]) == 0
        assert json.loads(capsys.readouterr().out)["force_discharge"] is True

    def test_no_device(self, tmp_path, capsys):
        from chargeguard import config
        config.set("sysfs.power_supply_dir", str(tmp_path / "empty"))
        assert cli.main(["status"]) == 1
        assert "No battery" in capsys.readouterr().out
