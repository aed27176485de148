"""
Command-line interface for the load scenario.

Three subcommands cover the life of a run:

- ``plan``  -- print the resolved configuration, the iteration count the
  executor should start, and the thresholds that will gate the run
- ``run``   -- launch Locust headless against the locustfile with the
  chosen configuration exported through ``LOAD_SCENARIO_CONFIG``
- ``check`` -- gate an already finished run from Locust's
  ``*_stats.csv``, for CI jobs that keep generation and gating apart

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0`` -- all thresholds passed
- ``1`` -- at least one threshold was breached
- ``2`` -- the script itself failed (missing file, bad YAML, etc.)
"""

from __future__ import annotations

import argparse
import csv
import logging
import os
import subprocess
import sys
from pathlib import Path

from load_scenario.config import CONFIG_PATH_ENV, Executor, LoadTestConfig, load_config
from load_scenario.errors import (
    EXIT_PASS,
    EXIT_SCRIPT_ERROR,
    EXIT_THRESHOLD_BREACH,
    ConfigError,
)
from load_scenario.metrics import CSV_METRICS, RunMetrics
from load_scenario.thresholds import evaluate_thresholds, format_summary, run_passed

logger = logging.getLogger("load_scenario.cli")

LOCUSTFILE = Path(__file__).resolve().parent / "locustfile.py"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="load-scenario",
        description="Constant-arrival-rate load scenario for a single HTTP endpoint.",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOAD_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan = subparsers.add_parser("plan", help="Print the resolved scenario")
    plan.add_argument("--config", type=Path, help="Path to scenario YAML file")

    run = subparsers.add_parser("run", help="Run the scenario with Locust (headless)")
    run.add_argument("--config", type=Path, help="Path to scenario YAML file")
    run.add_argument("--csv", dest="csv_prefix", help="Write Locust CSV stats with this prefix")
    run.add_argument(
        "locust_args",
        nargs=argparse.REMAINDER,
        help="Extra arguments passed to locust after '--'",
    )

    check = subparsers.add_parser(
        "check",
        help="Check a Locust stats CSV against the thresholds",
        description=(
            "Gate a finished run from its stats CSV.  Only http_req_duration, "
            "http_req_failed and http_reqs thresholds can be checked offline."
        ),
    )
    check.add_argument(
        "--stats",
        required=True,
        type=Path,
        help="Path to Locust *_stats.csv file",
    )
    check.add_argument("--config", type=Path, help="Path to scenario YAML file")
    return parser


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def describe_plan(config: LoadTestConfig) -> str:
    """Render the resolved configuration as a short human-readable plan."""
    scenario = config.scenario
    target = config.target
    lines = [f"Executor:            {scenario.executor.value}"]
    if scenario.executor is Executor.CONSTANT_ARRIVAL_RATE:
        lines += [
            f"Rate:                {scenario.rate} per {scenario.time_unit:g}s "
            f"({scenario.iterations_per_second:g} it/s)",
            f"Concurrency:         {scenario.pre_allocated_concurrency} pre-allocated, "
            f"{scenario.max_concurrency} max",
        ]
    else:
        lines.append(f"Concurrency:         {scenario.vus} users")
    lines.append(
        f"Duration:            {scenario.duration:g}s (graceful stop {scenario.graceful_stop:g}s)"
    )
    if scenario.executor is Executor.CONSTANT_ARRIVAL_RATE:
        lines.append(f"Expected iterations: {scenario.expected_iterations}")

    token = "placeholder" if target.has_placeholder_token else "configured"
    if target.can_login:
        token += f" (login via {target.auth_url})"
    lines += [
        f"Target:              GET {target.url}",
        f"Token:               {token}",
        "Thresholds:",
    ]
    for threshold in config.thresholds:
        suffix = "  [abort on fail]" if threshold.abort_on_fail else ""
        lines.append(f"  {threshold}{suffix}")
    return "\n".join(lines)


def _load_aggregated_row(stats_path: Path) -> dict[str, str]:
    """
    Find and return the ``Aggregated`` summary row from a Locust stats CSV.

    Raises:
        ValueError: If no ``Aggregated`` row is found.
    """
    with stats_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    for row in rows:
        if row.get("Name") == "Aggregated" or row.get("Type") == "Aggregated":
            return row

    raise ValueError("Could not find 'Aggregated' row in stats CSV")


def cmd_plan(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    print(describe_plan(config))
    return EXIT_PASS


def cmd_check(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    offline = sorted({t.metric for t in config.thresholds} - CSV_METRICS)
    if offline:
        raise ConfigError(
            f"Threshold metric(s) {', '.join(offline)} are not in Locust stats CSVs; "
            "gate them during the run instead"
        )
    metrics = RunMetrics.from_stats_row(_load_aggregated_row(args.stats))
    results = evaluate_thresholds(config.thresholds, metrics)
    print(format_summary(results))
    return EXIT_PASS if run_passed(results) else EXIT_THRESHOLD_BREACH


def build_locust_command(
    csv_prefix: str | None = None, extra_args: list[str] | None = None
) -> list[str]:
    command = ["locust", "-f", str(LOCUSTFILE), "--headless", "--only-summary"]
    if csv_prefix:
        command += ["--csv", csv_prefix]
    extra = list(extra_args or [])
    if extra and extra[0] == "--":
        extra = extra[1:]
    return command + extra


def cmd_run(args: argparse.Namespace) -> int:
    # Validate up-front so a bad file fails here rather than inside Locust.
    load_config(args.config)

    env = dict(os.environ)
    if args.config is not None:
        env[CONFIG_PATH_ENV] = str(args.config.resolve())
    command = build_locust_command(args.csv_prefix, args.locust_args)
    logger.info("Running: %s", " ".join(command))
    try:
        completed = subprocess.run(command, env=env, check=False)
    except FileNotFoundError:
        logger.error("locust executable not found on PATH")
        return EXIT_SCRIPT_ERROR
    return completed.returncode


COMMANDS = {
    "plan": cmd_plan,
    "run": cmd_run,
    "check": cmd_check,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        return COMMANDS[args.command](args)
    except (ConfigError, ValueError, OSError) as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
