"""
Integration tests for the reference target and the iteration body.

Tests use the Flask test client and demonstrate:
- Authentication and authorisation paths
- Response shape validation
- Threshold evaluation over real Locust statistics
"""
