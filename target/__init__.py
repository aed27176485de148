"""Reference target service for local runs and the integration tests."""
