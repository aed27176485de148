"""
Unit tests for the ``load-scenario`` command-line interface.

Key SDET Concepts Demonstrated:
- Exit-code contract for CI gating
- Offline threshold checks against Locust stats CSV files
- Subprocess boundary replaced by monkeypatch
"""

from __future__ import annotations

import csv
from types import SimpleNamespace

import pytest

from load_scenario import cli
from load_scenario.config import CONFIG_PATH_ENV, LoadTestConfig
from load_scenario.errors import EXIT_PASS, EXIT_SCRIPT_ERROR, EXIT_THRESHOLD_BREACH

pytestmark = pytest.mark.unit

_STATS_COLUMNS = [
    "Type",
    "Name",
    "Request Count",
    "Failure Count",
    "Median Response Time",
    "Average Response Time",
    "Min Response Time",
    "Max Response Time",
    "Requests/s",
    "95%",
    "99%",
]


@pytest.fixture
def stats_csv(tmp_path):
    """Write a Locust-style stats CSV with one endpoint and the aggregate."""

    def _write(p95: str = "20", failures: str = "0", include_aggregate: bool = True):
        path = tmp_path / "run_stats.csv"
        rows = [["GET", "/api/info", "10000", failures, "8", "9", "1", "80", "1000", p95, "40"]]
        if include_aggregate:
            rows.append(["", "Aggregated", "10000", failures, "8", "9", "1", "80", "1000", p95, "40"])
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(_STATS_COLUMNS)
            writer.writerows(rows)
        return path

    return _write


# -----------------------------------------------------------------------------
# plan
# -----------------------------------------------------------------------------


def test_plan_prints_reference_scenario(capsys):
    exit_code = cli.main(["plan"])

    out = capsys.readouterr().out
    assert exit_code == EXIT_PASS
    assert "constant-arrival-rate" in out
    assert "Expected iterations: 10000" in out
    assert "1000 pre-allocated, 1000 max" in out
    assert "GET http://localhost:8080/api/info" in out
    assert "http_req_duration: p(95)<50" in out
    assert "http_req_failed: rate<0.0001" in out


def test_describe_plan_marks_abort_thresholds_and_login(write_config):
    from load_scenario.config import load_config

    path = write_config(
        {
            "target": {
                "auth_url": "http://localhost:8080/api/auth",
                "username": "load@example.com",
                "password": "password123",
            },
            "thresholds": {"http_req_failed": [{"threshold": "rate<0.01", "abort_on_fail": True}]},
        }
    )

    plan = cli.describe_plan(load_config(path, environ={}))

    assert "login via http://localhost:8080/api/auth" in plan
    assert "http_req_failed: rate<0.01  [abort on fail]" in plan


def test_describe_plan_for_constant_vus():
    from load_scenario.config import Executor, ScenarioConfig

    plan = cli.describe_plan(LoadTestConfig(scenario=ScenarioConfig(executor=Executor.CONSTANT_VUS, vus=3)))

    assert "Concurrency:         3 users" in plan
    assert "Expected iterations" not in plan


def test_plan_with_invalid_config_exits_two(write_config, capsys):
    path = write_config({"scenario": {"pre_allocated_concurrency": 10, "max_concurrency": 5}})

    exit_code = cli.main(["plan", "--config", str(path)])

    assert exit_code == EXIT_SCRIPT_ERROR
    assert "plan failed" in capsys.readouterr().err


# -----------------------------------------------------------------------------
# check
# -----------------------------------------------------------------------------


def test_check_passes_within_thresholds(stats_csv, capsys):
    exit_code = cli.main(["check", "--stats", str(stats_csv())])

    assert exit_code == EXIT_PASS
    assert "Overall: PASS" in capsys.readouterr().out


@pytest.mark.parametrize(
    ("p95", "failures"),
    [("51", "0"), ("20", "2"), ("N/A", "0")],
    ids=["slow", "failing", "no-percentile"],
)
def test_check_breach_exits_one(stats_csv, capsys, p95, failures):
    exit_code = cli.main(["check", "--stats", str(stats_csv(p95=p95, failures=failures))])

    assert exit_code == EXIT_THRESHOLD_BREACH
    assert "Overall: FAIL" in capsys.readouterr().out


def test_check_uses_thresholds_from_config(stats_csv, write_config):
    path = write_config({"thresholds": {"http_req_duration": ["p(95)<100"]}})

    exit_code = cli.main(["check", "--stats", str(stats_csv(p95="51")), "--config", str(path)])

    assert exit_code == EXIT_PASS


@pytest.mark.parametrize(
    "thresholds",
    [
        {"checks": ["rate>0.99"]},
        {"iterations": ["count>100"]},
        {"http_req_duration": ["p(95)<50"], "iterations": ["rate>10"]},
    ],
)
def test_check_rejects_thresholds_the_csv_cannot_supply(stats_csv, write_config, capsys, thresholds):
    path = write_config({"thresholds": thresholds})

    exit_code = cli.main(["check", "--stats", str(stats_csv()), "--config", str(path)])

    err = capsys.readouterr().err
    assert exit_code == EXIT_SCRIPT_ERROR
    assert "not in Locust stats CSVs" in err
    assert "http_req_duration" not in err


def test_check_missing_stats_file_exits_two(tmp_path, capsys):
    exit_code = cli.main(["check", "--stats", str(tmp_path / "missing.csv")])

    assert exit_code == EXIT_SCRIPT_ERROR
    assert "check failed" in capsys.readouterr().err


def test_check_without_aggregated_row_exits_two(stats_csv):
    exit_code = cli.main(["check", "--stats", str(stats_csv(include_aggregate=False))])

    assert exit_code == EXIT_SCRIPT_ERROR


# -----------------------------------------------------------------------------
# run
# -----------------------------------------------------------------------------


def test_build_locust_command_defaults():
    command = cli.build_locust_command()

    assert command[:2] == ["locust", "-f"]
    assert command[2].endswith("locustfile.py")
    assert command[3:] == ["--headless", "--only-summary"]


def test_build_locust_command_passes_csv_and_extra_args():
    command = cli.build_locust_command("results/run", ["--", "--loglevel", "DEBUG"])

    assert command[-4:] == ["--csv", "results/run", "--loglevel", "DEBUG"]


def test_run_exports_config_and_returns_locust_exit_code(monkeypatch, write_config):
    # Arrange
    path = write_config({"scenario": {"rate": 10}})
    captured = {}

    def fake_run(command, env, check):
        captured.update(command=command, env=env, check=check)
        return SimpleNamespace(returncode=EXIT_THRESHOLD_BREACH)

    monkeypatch.setattr(cli.subprocess, "run", fake_run)

    # Act
    exit_code = cli.main(["run", "--config", str(path), "--csv", "out/run"])

    # Assert
    assert exit_code == EXIT_THRESHOLD_BREACH
    assert captured["env"][CONFIG_PATH_ENV] == str(path.resolve())
    assert "--csv" in captured["command"]
    assert captured["check"] is False


def test_run_without_locust_installed_exits_two(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("locust")

    monkeypatch.setattr(cli.subprocess, "run", missing)

    assert cli.main(["run"]) == EXIT_SCRIPT_ERROR


def test_run_validates_config_before_launching(monkeypatch, write_config):
    path = write_config({"scenario": {"rate": 0}})
    monkeypatch.setattr(cli.subprocess, "run", lambda *a, **k: pytest.fail("locust should not start"))

    assert cli.main(["run", "--config", str(path)]) == EXIT_SCRIPT_ERROR
