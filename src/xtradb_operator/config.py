"""Operator configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime settings for the operator.

    Every field can be overridden by the environment variable of the same
    name in upper case (see ``from_env``).
    """

    metrics_port: int = 8080
    resync_interval_seconds: float = 60.0
    halt_poll_interval_seconds: float = 2.0
    halt_timeout_seconds: float = 300.0
    status_update_retries: int = 5
    max_workers: int = 4
    cluster_image: str = "percona/percona-xtradb-cluster"
    standalone_image: str = "percona/percona-server"
    exporter_image: str = "prom/mysqld-exporter:v0.13.0"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build configuration from environment variables."""
        return cls(
            metrics_port=_env_int("METRICS_PORT", cls.metrics_port),
            resync_interval_seconds=_env_float("RESYNC_INTERVAL_SECONDS", cls.resync_interval_seconds),
            halt_poll_interval_seconds=_env_float("HALT_POLL_INTERVAL_SECONDS", cls.halt_poll_interval_seconds),
            halt_timeout_seconds=_env_float("HALT_TIMEOUT_SECONDS", cls.halt_timeout_seconds),
            status_update_retries=_env_int("STATUS_UPDATE_RETRIES", cls.status_update_retries),
            max_workers=_env_int("MAX_WORKERS", cls.max_workers),
            cluster_image=os.getenv("XTRADB_CLUSTER_IMAGE", cls.cluster_image),
            standalone_image=os.getenv("XTRADB_STANDALONE_IMAGE", cls.standalone_image),
            exporter_image=os.getenv("XTRADB_EXPORTER_IMAGE", cls.exporter_image),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
