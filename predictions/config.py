"""
Dispatch Configuration

Frozen configuration for the dispatcher and its collaborators.
Changes require a new instance.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional
import os


_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class DispatchConfig:
    # Publication (fire-and-forget, gated)
    publish_enabled: bool = False
    predictions_stream: str = "predictions"
    publish_endpoint: Optional[str] = None

    # Remote serving; timeouts surface as BACKEND_ERROR
    remote_timeout_seconds: float = 10.0

    # Persistence
    database_path: Optional[str] = None

    log_level: str = "INFO"

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> DispatchConfig:
        """Read PREDICTIONS_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = DispatchConfig()

        return DispatchConfig(
            publish_enabled=env.get(
                "PREDICTIONS_PUBLISH_ENABLED", ""
            ).strip().lower() in _TRUTHY,
            predictions_stream=env.get(
                "PREDICTIONS_STREAM", defaults.predictions_stream
            ),
            publish_endpoint=env.get("PREDICTIONS_PUBLISH_ENDPOINT") or None,
            remote_timeout_seconds=float(env.get(
                "PREDICTIONS_REMOTE_TIMEOUT_SECONDS", defaults.remote_timeout_seconds
            )),
            database_path=env.get("PREDICTIONS_DATABASE_PATH") or None,
            log_level=env.get("PREDICTIONS_LOG_LEVEL", defaults.log_level).upper(),
        )
