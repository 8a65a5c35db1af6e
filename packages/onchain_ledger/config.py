"""Runtime settings read from the process environment.

``load_settings()`` never touches ``.env`` files; the CLI loads them with
python-dotenv before calling it so library users stay in control.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.engine import make_url

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

DEFAULT_EXPLORER_BASE_URL = "https://eth.blockscout.com"
DEFAULT_LLM_MODEL = "gpt-5"


def network_currency_for(explorer_base_url: str) -> str:
    """Return the native currency symbol implied by the explorer URL."""

    return "C2FLR" if "coston2" in explorer_base_url.lower() else "ETH"


@dataclass(frozen=True, slots=True)
class Settings:
    explorer_base_url: str = DEFAULT_EXPLORER_BASE_URL
    explorer_api_key: str | None = None
    explorer_timeout_sec: float = 30.0
    llm_api_key: str | None = None
    llm_model: str = DEFAULT_LLM_MODEL
    llm_base_url: str | None = None
    llm_timeout_sec: float = 60.0
    oracle_address: str | None = None
    oracle_rpc_url: str | None = None
    oracle_enabled: bool = False
    price_ttl_ms: int = 60_000
    storage_url: str | None = None
    storage_service_key: str | None = None
    wallet_deadline_sec: float = 300.0
    bulk_concurrency: int = 5

    @property
    def network_currency(self) -> str:
        return network_currency_for(self.explorer_base_url)

    @property
    def oracle_configured(self) -> bool:
        return bool(self.oracle_enabled and self.oracle_address and self.oracle_rpc_url)

    def database_url(self) -> str | None:
        """Return the SQLAlchemy URL with the service key injected as password.

        The key is only applied when the URL does not already carry a password.
        """

        if not self.storage_url:
            return None
        if not self.storage_service_key:
            return self.storage_url
        url = make_url(self.storage_url)
        if url.password:
            return self.storage_url
        return url.set(password=self.storage_service_key).render_as_string(hide_password=False)


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def _number(env: Mapping[str, str], name: str, default: float, *, cast=float):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        val = cast(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be numeric, got {raw!r}") from e
    if val <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return val


def _opt(env: Mapping[str, str], *names: str) -> str | None:
    for n in names:
        v = env.get(n)
        if v is not None and v.strip():
            return v.strip()
    return None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (defaults to ``os.environ``)."""

    env = os.environ if environ is None else environ
    return Settings(
        explorer_base_url=(_opt(env, "EXPLORER_BASE_URL") or DEFAULT_EXPLORER_BASE_URL).rstrip("/"),
        explorer_api_key=_opt(env, "EXPLORER_API_KEY"),
        explorer_timeout_sec=_number(env, "EXPLORER_TIMEOUT_SEC", 30.0),
        llm_api_key=_opt(env, "LLM_API_KEY", "OPENAI_API_KEY"),
        llm_model=_opt(env, "LLM_MODEL") or DEFAULT_LLM_MODEL,
        llm_base_url=_opt(env, "LLM_BASE_URL"),
        llm_timeout_sec=_number(env, "LLM_TIMEOUT_SEC", 60.0),
        oracle_address=_opt(env, "ORACLE_ADDRESS"),
        oracle_rpc_url=_opt(env, "ORACLE_RPC_URL"),
        oracle_enabled=_bool(env, "ORACLE_ENABLED", False),
        price_ttl_ms=_number(env, "PRICE_TTL_MS", 60_000, cast=int),
        storage_url=_opt(env, "STORAGE_URL", "DATABASE_URL"),
        storage_service_key=_opt(env, "STORAGE_SERVICE_KEY"),
        wallet_deadline_sec=_number(env, "WALLET_DEADLINE_SEC", 300.0),
        bulk_concurrency=_number(env, "BULK_CONCURRENCY", 5, cast=int),
    )


__all__ = ["Settings", "load_settings", "network_currency_for"]
