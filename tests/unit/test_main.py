"""
Tests for the command-line entry point.
"""

from __future__ import annotations

import orjson
import pytest

from gcprobe.main import cli

CONFIG_YAML = """
shutdown_grace_ms: 0
account:
  username: probe_user
  password: hunter2
  shared_secret: "{secret}"
  target_id: "76561199556731347"
backend:
  time_scale: 0.001
"""


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    # Keep a developer's .env and exported secrets out of the run
    monkeypatch.chdir(tmp_path)
    for name in ("GCPROBE_USERNAME", "GCPROBE_PASSWORD", "GCPROBE_SHARED_SECRET", "GCPROBE_TARGET_ID"):
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, secret="MDEyMzQ1Njc4OWFiY2RlZmdoaWo="):
    path = tmp_path / "probe.yaml"
    path.write_text(CONFIG_YAML.format(secret=secret))
    return str(path)


class TestStartupErrors:
    def test_missing_config_prints_example(self, capsys):
        assert cli(["--config", "does-not-exist.yaml"]) == 1
        err = capsys.readouterr().err
        assert "[ERROR] Missing required configuration" in err
        assert "your_shared_secret_from_mafile" in err

    def test_bad_shared_secret(self, tmp_path, capsys):
        path = _write_config(tmp_path, secret="%%%")
        assert cli(["--config", path]) == 1
        captured = capsys.readouterr()
        assert "Failed to generate 2FA code" in captured.err
        assert "PROBE COMPLETED" not in captured.out

    def test_unknown_report_format_is_a_startup_error(self, tmp_path, capsys):
        path = tmp_path / "probe.yaml"
        path.write_text(CONFIG_YAML.format(secret="MDEyMzQ1Njc4OWFiY2RlZmdoaWo=") + "report:\n  format: xml\n")
        assert cli(["--config", str(path)]) == 1
        captured = capsys.readouterr()
        assert "[ERROR] Invalid configuration" in captured.err
        assert "report.format" in captured.err
        assert "PROBE COMPLETED" not in captured.out


class TestFullRun:
    def test_simulated_run_succeeds(self, tmp_path, capsys):
        path = _write_config(tmp_path)
        assert cli(["--config", path]) == 0
        out = capsys.readouterr().out
        assert "Result    : SUCCESS" in out

    def test_json_flag_overrides_config(self, tmp_path, capsys):
        path = _write_config(tmp_path)
        assert cli(["--config", path, "--format", "json"]) == 0
        body = orjson.loads(capsys.readouterr().out.strip())
        assert body["kind"] == "success"
        assert body["exit_code"] == 0
