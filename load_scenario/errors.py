"""Exception types raised by the load scenario package."""

from __future__ import annotations


class ConfigError(ValueError):
    """Raised when the scenario configuration cannot be loaded or is invalid."""


class ThresholdError(ConfigError):
    """Raised for an unparseable threshold expression or unknown metric."""


class AuthError(RuntimeError):
    """Raised when a bearer token cannot be obtained from the auth endpoint."""


# Process exit codes shared by the Locust run and the offline ``check``
# command, so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2
