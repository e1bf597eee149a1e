"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

from pydantic import SecretStr

from flipmap_gateway.exceptions import StartupError

_TRUTHY = {"1", "true", "yes", "on"}
# Names accepted by both the logging module and uvicorn.
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise StartupError(f"{name} must be a number, got {raw!r}") from exc


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise StartupError(f"{name} must be an integer, got {raw!r}") from exc


def _log_level_env(name: str, default: str) -> str:
    raw = os.getenv(name, default)
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        raise StartupError(f"{name} must be one of {', '.join(LOG_LEVELS)}, got {raw!r}")
    return level


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings populated from environment variables."""

    ors_api_key: SecretStr
    ors_base_url: str
    ors_profile: str
    photon_base_url: str
    upstream_timeout_seconds: float
    allow_insecure_upstreams: bool = False
    host: str = "0.0.0.0"
    port: int = 1337
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        A missing ``ORS_API_KEY`` is not rejected here; the requester's
        startup checks own that decision so the failure is reported once.

        Returns:
            A frozen Settings instance with values from the environment.

        Raises:
            StartupError: If a numeric variable cannot be parsed or the log
                level is unknown.
        """
        return cls(
            ors_api_key=SecretStr(os.getenv("ORS_API_KEY", "")),
            ors_base_url=os.getenv("ORS_BASE_URL", "https://api.openrouteservice.org"),
            ors_profile=os.getenv("ORS_PROFILE", "driving-car"),
            photon_base_url=os.getenv("PHOTON_BASE_URL", "https://photon.komoot.io"),
            upstream_timeout_seconds=_float_env("UPSTREAM_TIMEOUT_SECONDS", "10"),
            allow_insecure_upstreams=(
                os.getenv("ALLOW_INSECURE_UPSTREAMS", "false").strip().lower() in _TRUTHY
            ),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_env("PORT", "1337"),
            log_level=_log_level_env("LOG_LEVEL", "INFO"),
        )
