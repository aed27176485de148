"""Unit tests for the ``load_scenario`` package."""
