"""
Integration test configuration.

Integration tests share the root fixtures; everything under this folder is
marked so it can be selected or skipped with ``-m integration``.
"""

import pytest


def pytest_collection_modifyitems(config, items):
    """Automatically mark integration tests."""
    for item in items:
        if "integration" in str(item.path):
            item.add_marker(pytest.mark.integration)
