"""
Root pytest configuration.

This conftest is loaded before test collection to ensure
src is in the Python path for all imports.
"""

import sys
from pathlib import Path

# Add src to path IMMEDIATELY when this file is loaded
src_path = Path(__file__).parent / "src"
src_str = str(src_path.absolute())

# Ensure it's at the very front
if src_str in sys.path:
    sys.path.remove(src_str)
sys.path.insert(0, src_str)


import pytest


@pytest.fixture(autouse=True)
def _reset_authz_singletons():
    """Reset process-wide caches and registries between tests for isolation."""
    yield
    from authz.cache import reset_permission_cache
    from authz.check import reset_check_cache
    from authz.policies import reset_policy_registry
    from config.settings import get_settings

    reset_permission_cache()
    reset_check_cache()
    reset_policy_registry()
    get_settings.cache_clear()


def pytest_configure(config):
    """Additional path setup during pytest configuration."""
    # Double-check the path is set
    if src_str not in sys.path:
        sys.path.insert(0, src_str)
