"""
Scenario configuration for the load test.

Declares the traffic shape (executor, arrival rate, duration, concurrency
bounds), the target request, and the pass/fail thresholds as immutable
dataclasses.  Values are read from a YAML file, then individual options
can be overridden through environment variables so that CI jobs can
retarget a run without editing the file.

Resolution order for the config file:

1. the ``path`` argument passed to :func:`load_config`
2. the ``LOAD_SCENARIO_CONFIG`` environment variable
3. no file at all -- the built-in defaults below

The built-in defaults reproduce the reference scenario: 1000 iterations
per second for 10 seconds with 1000 pre-allocated (and at most 1000)
concurrent users, ``p(95)<50`` on request duration and ``rate<0.0001``
on failed requests.

Key Concepts Demonstrated:
- Frozen dataclasses validated on construction
- YAML configuration with strict key checking
- Environment variable overrides with sensible defaults
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from load_scenario.errors import ConfigError, ThresholdError
from load_scenario.thresholds import DEFAULT_THRESHOLDS, Threshold

CONFIG_PATH_ENV = "LOAD_SCENARIO_CONFIG"

# Signals that no real credential was supplied; requests against an
# authenticated endpoint will fail until it is replaced.
PLACEHOLDER_TOKEN = "<your_jwt_valid>"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any, option: str = "duration") -> float:
    """
    Convert a duration such as ``"1s"``, ``"500ms"`` or ``"1m30s"`` to seconds.

    Bare numbers are taken as seconds.

    Args:
        value: Duration string or number.
        option: Option name used in error messages.

    Returns:
        The duration in seconds.

    Raises:
        ConfigError: If the value is empty, negative, or malformed.
    """
    if isinstance(value, bool):
        raise ConfigError(f"'{option}' must be a duration, got {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ConfigError(f"'{option}' must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            position = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                position = match.end()
            if position != len(text) or position == 0:
                raise ConfigError(f"'{option}' is not a valid duration: {value!r}") from None

    if seconds < 0:
        raise ConfigError(f"'{option}' must not be negative")
    return seconds


def _positive_int(value: Any, option: str) -> int:
    """Coerce *value* to a positive ``int`` or raise :class:`ConfigError`."""
    if isinstance(value, bool):
        raise ConfigError(f"'{option}' must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{option}' must be a positive integer, got {value!r}") from exc
    if number != value and not isinstance(value, str):
        raise ConfigError(f"'{option}' must be a whole number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"'{option}' must be a positive integer, got {value!r}")
    return number


class Executor(str, Enum):
    """How the runtime schedules iterations."""

    CONSTANT_ARRIVAL_RATE = "constant-arrival-rate"
    CONSTANT_VUS = "constant-vus"


@dataclass(frozen=True)
class ScenarioConfig:
    """
    Traffic shape of the run.

    Attributes:
        executor: Scheduling model.  ``constant-arrival-rate`` starts
            ``rate`` iterations per ``time_unit`` regardless of how long
            each one takes; ``constant-vus`` loops ``vus`` users.
        rate: Iterations started per ``time_unit``.
        time_unit: Seconds the ``rate`` is expressed over.
        duration: Seconds after which no new iteration is started.
        pre_allocated_concurrency: Users spawned at start.
        max_concurrency: Upper bound the pool may grow to when the rate
            cannot be sustained with the pre-allocated users.
        vus: Fixed user count for the ``constant-vus`` executor.
        graceful_stop: Seconds in-flight iterations get to finish once
            ``duration`` has elapsed.
    """

    executor: Executor = Executor.CONSTANT_ARRIVAL_RATE
    rate: int = 1000
    time_unit: float = 1.0
    duration: float = 10.0
    pre_allocated_concurrency: int = 1000
    max_concurrency: int = 1000
    vus: int = 1
    graceful_stop: float = 30.0

    def __post_init__(self) -> None:
        for option in ("rate", "pre_allocated_concurrency", "max_concurrency", "vus"):
            _positive_int(getattr(self, option), option)
        if self.time_unit <= 0:
            raise ConfigError("'time_unit' must be greater than zero")
        if self.duration <= 0:
            raise ConfigError("'duration' must be greater than zero")
        if self.graceful_stop < 0:
            raise ConfigError("'graceful_stop' must not be negative")
        if self.max_concurrency < self.pre_allocated_concurrency:
            raise ConfigError(
                "'max_concurrency' must be greater than or equal to 'pre_allocated_concurrency' "
                f"({self.max_concurrency} < {self.pre_allocated_concurrency})"
            )

    @property
    def iterations_per_second(self) -> float:
        return self.rate / self.time_unit

    @property
    def expected_iterations(self) -> int:
        """Iterations a constant-arrival-rate run should start in total."""
        return round(self.rate * self.duration / self.time_unit)

    @property
    def initial_concurrency(self) -> int:
        if self.executor is Executor.CONSTANT_VUS:
            return self.vus
        return self.pre_allocated_concurrency


@dataclass(frozen=True)
class TargetConfig:
    """
    The endpoint every iteration requests.

    Attributes:
        url: Absolute URL fetched with ``GET``.
        token: Bearer credential placed in the ``Authorization`` header.
        auth_url: Optional login endpoint used to replace a placeholder
            token at test start.
        username: Login name for ``auth_url``.
        password: Password for ``auth_url``.
        timeout: Per-request timeout in seconds.
        pause: Seconds each iteration sleeps after its check.
    """

    url: str = "http://localhost:8080/api/info"
    token: str = PLACEHOLDER_TOKEN
    auth_url: str | None = None
    username: str | None = None
    password: str | None = None
    timeout: float = 60.0
    pause: float = 0.001

    def __post_init__(self) -> None:
        _require_absolute_url(self.url, "url")
        if self.auth_url is not None:
            _require_absolute_url(self.auth_url, "auth_url")
        if self.timeout <= 0:
            raise ConfigError("'timeout' must be greater than zero")
        if self.pause < 0:
            raise ConfigError("'pause' must not be negative")

    @property
    def host(self) -> str:
        """Scheme and authority of :attr:`url`, as Locust's ``host`` expects."""
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def has_placeholder_token(self) -> bool:
        return not self.token or self.token == PLACEHOLDER_TOKEN

    @property
    def can_login(self) -> bool:
        return bool(self.auth_url and self.username and self.password)


@dataclass(frozen=True)
class LoadTestConfig:
    """Complete, immutable configuration for one run."""

    scenario: ScenarioConfig = field(default_factory=ScenarioConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    thresholds: tuple[Threshold, ...] = DEFAULT_THRESHOLDS


def _require_absolute_url(value: Any, option: str) -> None:
    parsed = urlparse(value) if isinstance(value, str) else None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"'{option}' must be an absolute http(s) URL, got {value!r}")


# Recognised options per section, mapped to their converter.
_SCENARIO_OPTIONS = {
    "executor": lambda value, option: _executor(value),
    "rate": _positive_int,
    "time_unit": parse_duration,
    "duration": parse_duration,
    "pre_allocated_concurrency": _positive_int,
    "max_concurrency": _positive_int,
    "vus": _positive_int,
    "graceful_stop": parse_duration,
}
_TARGET_OPTIONS = {
    "url": lambda value, option: str(value),
    "token": lambda value, option: str(value),
    "auth_url": lambda value, option: str(value),
    "username": lambda value, option: str(value),
    "password": lambda value, option: str(value),
    "timeout": parse_duration,
    "pause": parse_duration,
}
_TOP_LEVEL_KEYS = {"scenario", "target", "thresholds"}

# Environment variable -> (section, option).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "LOAD_TARGET_URL": ("target", "url"),
    "LOAD_TOKEN": ("target", "token"),
    "LOAD_AUTH_URL": ("target", "auth_url"),
    "LOAD_USERNAME": ("target", "username"),
    "LOAD_PASSWORD": ("target", "password"),
    "LOAD_RATE": ("scenario", "rate"),
    "LOAD_TIME_UNIT": ("scenario", "time_unit"),
    "LOAD_DURATION": ("scenario", "duration"),
    "LOAD_PRE_ALLOCATED": ("scenario", "pre_allocated_concurrency"),
    "LOAD_MAX_CONCURRENCY": ("scenario", "max_concurrency"),
}


def _executor(value: Any) -> Executor:
    try:
        return Executor(value)
    except ValueError as exc:
        known = ", ".join(executor.value for executor in Executor)
        raise ConfigError(f"Unknown executor {value!r} (known: {known})") from exc


def _convert_section(
    raw: Any, options: Mapping[str, Any], section: str
) -> dict[str, Any]:
    """Validate keys of one YAML section and convert each value."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'{section}' must be a mapping")

    unknown = sorted(set(raw) - set(options))
    if unknown:
        raise ConfigError(f"Unknown option(s) in '{section}': {', '.join(map(str, unknown))}")

    return {
        key: options[key](value, f"{section}.{key}")
        for key, value in raw.items()
        if value is not None
    }


def _parse_thresholds(raw: Any) -> tuple[Threshold, ...]:
    """
    Build thresholds from the ``thresholds`` section.

    Each metric maps to a list whose items are either an expression
    string or a mapping with ``threshold``, ``abort_on_fail`` and
    ``delay_abort_eval`` keys.
    """
    if raw is None:
        return DEFAULT_THRESHOLDS
    if not isinstance(raw, Mapping):
        raise ConfigError("'thresholds' must be a mapping of metric name to expressions")

    thresholds: list[Threshold] = []
    for metric, items in raw.items():
        if isinstance(items, (str, Mapping)):
            items = [items]
        if not isinstance(items, list):
            raise ThresholdError(f"Thresholds for '{metric}' must be a list")
        for item in items:
            if isinstance(item, Mapping):
                unknown = sorted(set(item) - {"threshold", "abort_on_fail", "delay_abort_eval"})
                if unknown:
                    raise ThresholdError(
                        f"Unknown threshold option(s) for '{metric}': {', '.join(unknown)}"
                    )
                if "threshold" not in item:
                    raise ThresholdError(f"Threshold for '{metric}' is missing 'threshold'")
                thresholds.append(
                    Threshold.parse(
                        str(metric),
                        item["threshold"],
                        abort_on_fail=bool(item.get("abort_on_fail", False)),
                        delay_abort_eval=parse_duration(
                            item.get("delay_abort_eval", 0), f"thresholds.{metric}.delay_abort_eval"
                        ),
                    )
                )
            else:
                thresholds.append(Threshold.parse(str(metric), item))
    return tuple(thresholds)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def config_from_mapping(data: Mapping[str, Any]) -> LoadTestConfig:
    """
    Build a :class:`LoadTestConfig` from already-parsed YAML data.

    Raises:
        ConfigError: On unknown keys, invalid values, or a broken
            invariant such as ``max_concurrency < pre_allocated_concurrency``.
    """
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"Unknown top-level option(s): {', '.join(map(str, unknown))}")

    scenario = ScenarioConfig(**_convert_section(data.get("scenario"), _SCENARIO_OPTIONS, "scenario"))
    target = TargetConfig(**_convert_section(data.get("target"), _TARGET_OPTIONS, "target"))
    return LoadTestConfig(
        scenario=scenario,
        target=target,
        thresholds=_parse_thresholds(data.get("thresholds")),
    )


def apply_env_overrides(
    config: LoadTestConfig, environ: Mapping[str, str]
) -> LoadTestConfig:
    """Return a copy of *config* with ``LOAD_*`` environment overrides applied."""
    changes: dict[str, dict[str, Any]] = {"scenario": {}, "target": {}}
    for env_var, (section, option) in ENV_OVERRIDES.items():
        raw = environ.get(env_var, "").strip()
        if not raw:
            continue
        options = _SCENARIO_OPTIONS if section == "scenario" else _TARGET_OPTIONS
        changes[section][option] = options[option](raw, env_var)

    return replace(
        config,
        scenario=replace(config.scenario, **changes["scenario"]),
        target=replace(config.target, **changes["target"]),
    )


def load_config(
    path: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoadTestConfig:
    """
    Load, override, and validate the scenario configuration.

    Args:
        path: Optional YAML file.  Falls back to ``LOAD_SCENARIO_CONFIG``
            and then to the built-in defaults.
        environ: Environment mapping; defaults to :data:`os.environ`.

    Returns:
        A validated, immutable :class:`LoadTestConfig`.

    Raises:
        ConfigError: If the file is missing or unreadable, or any option
            is invalid.
    """
    if environ is None:
        environ = os.environ
    if path is None:
        path = environ.get(CONFIG_PATH_ENV) or None

    data = _read_yaml(Path(path)) if path is not None else {}
    return apply_env_overrides(config_from_mapping(data), environ)
