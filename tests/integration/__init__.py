"""
Docker-based integration tests for the buildpack harness.

Runs the real app, router and proxy containers. Requires a Docker daemon,
the harness images and RUN_INTEGRATION_TESTS=1.
"""
