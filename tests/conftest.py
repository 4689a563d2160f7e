"""Pytest configuration and fixtures for test suite."""

import os
import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("FORMS_ENVIRONMENT", "test")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


VIACEP_SE = {
    "cep": "01001-000",
    "logradouro": "Praça da Sé",
    "complemento": "lado ímpar",
    "bairro": "Sé",
    "localidade": "São Paulo",
    "uf": "SP",
    "ibge": "3550308",
}


@pytest.fixture
def settings():
    """Settings with lookups firing almost immediately."""
    from config.settings import FormEngineSettings

    return FormEngineSettings(lookup_debounce_ms=10, _env_file=None)


@pytest.fixture
def submit_service():
    """Submission capability that always accepts."""
    from forms.wizard import SubmitResult

    return AsyncMock(return_value=SubmitResult.success({"id": 1}))


@pytest.fixture
def cep_lookup():
    """Lookup capability answering with the Praça da Sé address."""
    return AsyncMock(return_value=dict(VIACEP_SE))


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 1, 9, 0)
