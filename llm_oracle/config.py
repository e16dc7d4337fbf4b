"""Environment-driven settings for the oracle process."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .llm import GEMINI_MODEL, OPENAI_MODEL, GeminiBackend, LLMBackend, OpenAIChatBackend

log = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://devnet.magicblock.app/"
DEFAULT_WEBSOCKET_URL = "ws://devnet.magicblock.app/"
DEFAULT_PROGRAM_ID = "LLMrieZMpbJFwN52WgmBNMxYojrpRVYXdC1RCweEbab"
GEMINI_PLACEHOLDER_KEY = "your-gemini-api-key-here"

BACKEND_GEMINI = "gemini"
BACKEND_OPENAI = "openai"


class ConfigError(Exception):
    pass


def select_backend_kind(gemini_key: Optional[str], openai_key: Optional[str]) -> str:
    if gemini_key and gemini_key != GEMINI_PLACEHOLDER_KEY:
        return BACKEND_GEMINI
    if openai_key:
        return BACKEND_OPENAI
    raise ConfigError(
        "No valid API key found. Please set GEMINI_API_KEY or OPENAI_API_KEY in .env file"
    )


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class OracleSettings:
    identity: str
    backend: str
    rpc_url: str = DEFAULT_RPC_URL
    websocket_url: str = DEFAULT_WEBSOCKET_URL
    program_id: str = DEFAULT_PROGRAM_ID
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_model: str = GEMINI_MODEL
    openai_model: str = OPENAI_MODEL
    memory_max_entries: int = 10
    max_api_attempts: int = 3
    max_tx_attempts: int = 5
    max_blockhash_failures: int = 20
    blockhash_retry_delay: float = 1.0
    compute_unit_limit: int = 300_000
    compute_unit_price: int = 1_000_000
    queue_capacity: int = 100
    restart_delay: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OracleSettings":
        env = os.environ if environ is None else environ
        identity = (env.get("IDENTITY") or "").strip()
        if not identity:
            raise ConfigError("IDENTITY must hold the oracle's base58 secret key")
        gemini_key = (env.get("GEMINI_API_KEY") or "").strip() or None
        openai_key = (env.get("OPENAI_API_KEY") or "").strip() or None
        return cls(
            identity=identity,
            backend=select_backend_kind(gemini_key, openai_key),
            rpc_url=env.get("RPC_URL") or DEFAULT_RPC_URL,
            websocket_url=env.get("WEBSOCKET_URL") or DEFAULT_WEBSOCKET_URL,
            program_id=env.get("ORACLE_PROGRAM_ID") or DEFAULT_PROGRAM_ID,
            gemini_api_key=gemini_key,
            openai_api_key=openai_key,
            gemini_model=env.get("GEMINI_MODEL") or GEMINI_MODEL,
            openai_model=env.get("OPENAI_MODEL") or OPENAI_MODEL,
            memory_max_entries=_env_int(env, "MEMORY_MAX_ENTRIES", 10),
            max_api_attempts=_env_int(env, "MAX_API_RETRY_ATTEMPTS", 3),
            max_tx_attempts=_env_int(env, "MAX_TX_RETRY_ATTEMPTS", 5),
            max_blockhash_failures=_env_int(env, "MAX_BLOCKHASH_FAILURES", 20),
            blockhash_retry_delay=_env_float(env, "BLOCKHASH_RETRY_DELAY", 1.0),
            compute_unit_limit=_env_int(env, "COMPUTE_UNIT_LIMIT", 300_000),
            compute_unit_price=_env_int(env, "COMPUTE_UNIT_PRICE", 1_000_000),
            queue_capacity=_env_int(env, "UPDATE_QUEUE_CAPACITY", 100),
            restart_delay=_env_float(env, "RESTART_DELAY_SECONDS", 30.0),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )


def build_backend(settings: OracleSettings) -> LLMBackend:
    if settings.backend == BACKEND_GEMINI:
        log.info("Using Gemini AI (%s)", settings.gemini_model)
        return GeminiBackend(settings.gemini_api_key or "", model=settings.gemini_model)
    if settings.backend == BACKEND_OPENAI:
        log.info("Using OpenAI (%s)", settings.openai_model)
        return OpenAIChatBackend(settings.openai_api_key or "", model=settings.openai_model)
    raise ConfigError(f"unknown backend {settings.backend!r}")
