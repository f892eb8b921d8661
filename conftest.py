"""Root pytest configuration."""

pytest_plugins = ["e2e_harness.pytest_plugin"]
