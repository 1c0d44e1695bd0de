"""
Early pytest configuration plugin.

Loaded before any test module is imported so that settings from the
developer's shell cannot leak into the tests.
"""

import os

import pytest


def pytest_configure(config):
    """Drop INBOUND_GUARD_* variables inherited from the environment."""
    for key in [k for k in os.environ if k.startswith("INBOUND_GUARD_")]:
        os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    """Run every test from its own temp dir; default paths are relative."""
    monkeypatch.chdir(tmp_path)
