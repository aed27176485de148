"""
Constant-arrival-rate load scenario for a single HTTP endpoint (Locust-based).

Contains the typed scenario configuration, the per-iteration request and
check, the arrival-rate pacing and load shape, and the threshold gate
that together turn a declarative scenario into a Locust run with a
pass/fail exit status.

The Locust entrypoint is :file:`load_scenario/locustfile.py`; the
``plan``, ``run`` and ``check`` commands live in :mod:`load_scenario.cli`.
"""

__version__ = "1.0.0"
