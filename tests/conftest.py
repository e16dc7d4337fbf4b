"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Make the repository root importable without installing the project
ROOT_PATH = Path(__file__).resolve().parent.parent
if str(ROOT_PATH) not in sys.path:
    sys.path.insert(0, str(ROOT_PATH))

from solders.keypair import Keypair  # noqa: E402


@pytest.fixture(scope="session")
def identity() -> Keypair:
    return Keypair()


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Drop oracle variables that could leak in from the developer's shell or .env."""
    for var in [
        "IDENTITY",
        "RPC_URL",
        "WEBSOCKET_URL",
        "GEMINI_API_KEY",
        "OPENAI_API_KEY",
        "ORACLE_PROGRAM_ID",
        "MEMORY_MAX_ENTRIES",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield
