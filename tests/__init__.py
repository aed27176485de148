"""
Test suite for the load scenario.

This package contains:
- unit/: Configuration, thresholds, metrics, pacing, gate and CLI tests
  with Locust collaborators replaced by lightweight doubles
- integration/: Reference target API tests and the iteration body
  driven end to end through the Flask test client
"""
