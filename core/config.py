# core/config.py
"""
Environment configuration.

Only ambient settings live here (retry tuning, HTTP timeouts, logging).
Provider selection and credentials arrive per request; the gateway never
reads them from the environment. The API surface may use the credential
fallbacks below when a request omits its own.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from core.retry import RetryConfig

load_dotenv()


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    retry_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_backoff: float = 60.0
    http_connect_timeout: float = 5.0
    http_read_timeout: float = 120.0
    log_level: str = "INFO"
    gemini_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            retry_attempts=_int("GATEWAY_RETRY_ATTEMPTS", 3),
            retry_base_delay=_float("GATEWAY_RETRY_BASE_DELAY", 2.0),
            retry_max_backoff=_float("GATEWAY_RETRY_MAX_BACKOFF", 60.0),
            http_connect_timeout=_float("GATEWAY_HTTP_CONNECT_TIMEOUT", 5.0),
            http_read_timeout=_float("GATEWAY_HTTP_READ_TIMEOUT", 120.0),
            log_level=os.getenv("GATEWAY_LOG_LEVEL", "INFO").upper(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_backoff=self.retry_max_backoff,
        )
