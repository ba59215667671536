"""
Shared fixtures.
"""

import pytest

from browserflow.config.settings import Settings


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and writing under tmp_path."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        captures_dir=tmp_path / "data" / "captures",
        storage_state_file=tmp_path / "data" / "storage_state.json",
        regex_timeout_ms=200,
        sandbox_timeout_ms=5000,
    )
