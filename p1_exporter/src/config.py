"""
Exporter configuration loaded from command-line flags and environment variables.

Uses Pydantic BaseSettings for env var loading and validation. Every option
can be given as a long flag (``--host``) or as an environment variable
(``HOMEWIZARD_HOST``); explicit flags win over the environment, which wins
over a ``.env`` file in the working directory.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-19: DATA_PATH moved here; homewizard_url feeds the client

TODO:
- None
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_PATH = "/api/v1/data"
"""Path of the P1 meter data endpoint."""

LOG_LEVELS: tuple[str, ...] = ("trace", "debug", "info", "warn", "error")
"""Accepted values for LOG_LEVEL / --log-level."""


class ConfigError(Exception):
    """Raised when the exporter configuration cannot be built."""


class ExporterSettings(BaseSettings):
    """HomeWizard P1 exporter configuration.

    Field names match the environment variable names (case-insensitive), so
    ``HOMEWIZARD_HOST`` populates ``homewizard_host``.

    Attributes:
        homewizard_host: P1 meter IP address or hostname on the local LAN.
        metrics_port: Port the scrape endpoint binds to on all interfaces.
        poll_interval: Seconds between upstream polls.
        log_level: One of trace, debug, info, warn, error.
        homewizard_api_token: Optional bearer token sent to the meter.
        http_timeout: End-to-end timeout in seconds for one upstream request.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    homewizard_host: str
    metrics_port: int = 9898
    poll_interval: int = 10
    log_level: str = "info"
    homewizard_api_token: str | None = None
    http_timeout: int = 5

    @field_validator("homewizard_host")
    @classmethod
    def host_must_not_be_blank(cls, v: str) -> str:
        """Reject an empty or whitespace-only host."""
        v = v.strip()
        if not v:
            raise ValueError("HOMEWIZARD_HOST must not be empty")
        return v

    @field_validator("metrics_port")
    @classmethod
    def metrics_port_must_be_valid(cls, v: int) -> int:
        """Validate the scrape port is in the TCP range."""
        if v < 1 or v > 65535:
            raise ValueError("METRICS_PORT must be between 1 and 65535")
        return v

    @field_validator("poll_interval")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("POLL_INTERVAL must be >= 1")
        return v

    @field_validator("http_timeout")
    @classmethod
    def http_timeout_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("HTTP_TIMEOUT must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise the log level to lower case and check it is supported."""
        v = v.strip().lower()
        if v not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("homewizard_api_token")
    @classmethod
    def empty_token_is_absent(cls, v: str | None) -> str | None:
        """Treat an empty token as not configured."""
        if v is not None and not v.strip():
            return None
        return v

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def homewizard_url(self) -> str:
        """Upstream data endpoint on the P1 meter."""
        return f"http://{self.homewizard_host}{DATA_PATH}"

    @property
    def metrics_bind_address(self) -> str:
        return f"0.0.0.0:{self.metrics_port}"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Every flag defaults to ``None`` so that only explicitly given flags
    override values from the environment.
    """
    p = argparse.ArgumentParser(
        prog="homewizard-p1-exporter",
        description="Prometheus exporter for the HomeWizard P1 meter",
    )
    p.add_argument(
        "--host", dest="homewizard_host", default=None,
        help="HomeWizard P1 meter IP address or hostname (env HOMEWIZARD_HOST)",
    )
    p.add_argument(
        "--port", dest="metrics_port", type=int, default=None,
        help="Port to expose Prometheus metrics on (env METRICS_PORT, default 9898)",
    )
    p.add_argument(
        "--poll-interval", dest="poll_interval", type=int, default=None,
        help="Seconds between polls of the HomeWizard API (env POLL_INTERVAL, default 10)",
    )
    p.add_argument(
        "--log-level", dest="log_level", default=None,
        help="Log level: trace, debug, info, warn, error (env LOG_LEVEL, default info)",
    )
    p.add_argument(
        "--api-token", dest="homewizard_api_token", default=None,
        help="Optional bearer token for the HomeWizard API (env HOMEWIZARD_API_TOKEN)",
    )
    p.add_argument(
        "--http-timeout", dest="http_timeout", type=int, default=None,
        help="Timeout in seconds for requests to HomeWizard (env HTTP_TIMEOUT, default 5)",
    )
    return p


def load_settings(argv: Sequence[str] | None = None) -> ExporterSettings:
    """Parse flags, merge them over the environment and validate.

    Args:
        argv: Argument list without the program name; ``None`` reads
            ``sys.argv``.

    Returns:
        The validated, immutable settings.

    Raises:
        ConfigError: If a required value is missing or any value is invalid.
        SystemExit: From argparse on malformed flags (e.g. ``--port abc``).
    """
    args = build_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    try:
        return ExporterSettings(**overrides)
    except ValidationError as exc:
        raise ConfigError(_describe_validation_error(exc)) from exc


def _describe_validation_error(exc: ValidationError) -> str:
    """Turn a pydantic ValidationError into a one-line-per-field diagnostic."""
    lines = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "config"
        if err["type"] == "missing":
            lines.append(f"{field.upper()} is required (flag or environment variable)")
        else:
            lines.append(f"{field.upper()}: {err['msg']}")
    return "invalid configuration: " + "; ".join(lines)
