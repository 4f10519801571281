"""Configuration for pytest."""

# Import fixtures to make them available to all tests
from prstack.tests.e2e.fixtures import stack_env  # noqa: F401
