"""
Pytest configuration for Django tests with SQLite.

Uses a throwaway SQLite database file - no Docker required.
"""

import os

import pytest

# Set test settings module before importing Django
os.environ["DJANGO_SETTINGS_MODULE"] = "harmonic.settings_test"


@pytest.fixture(autouse=True)
def _clean_execution_context():
    """Make sure no test starts or ends with ambient tenant context."""
    from execution.context import ExecutionContext

    ExecutionContext.clear()
    yield
    ExecutionContext.clear()
