"""
Pytest fixtures for the ESC parameter store tests.
"""
import pytest

from esc_params.configuration import ParameterStore
from esc_params.storage.flash import RamFlash

ENV_VARS = (
    "ESC_PARAMS_IMAGE",
    "ESC_PARAMS_REGION",
    "ESC_PARAMS_ERASE_SIZE",
    "ESC_PARAMS_LOG_LEVEL",
)


@pytest.fixture
def flash():
    """Erased, write-protected simulated parameter flash."""
    return RamFlash()


@pytest.fixture
def store(flash):
    return ParameterStore(flash)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove ESC_PARAMS_* variables and restore them (or their absence) afterwards."""
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch
