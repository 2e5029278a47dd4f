"""Typed view of the PerconaXtraDB custom resource."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .constants import (
    API_GROUP_VERSION,
    DEFAULT_EXPORTER_PORT,
    KIND_PERCONA_XTRADB,
    PHASE_HALTED,
    PHASE_PROVISIONING,
    PHASE_READY,
    PHASE_TERMINATING,
    STORAGE_TYPE_DURABLE,
    TERMINATION_POLICY_DELETE,
    TERMINATION_POLICY_HALT,
    TERMINATION_POLICY_PAUSE,
    TERMINATION_POLICY_WIPE_OUT,
)

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Coarse lifecycle phase stored in ``status.phase``."""

    UNSET = ""
    PROVISIONING = PHASE_PROVISIONING
    READY = PHASE_READY
    HALTED = PHASE_HALTED
    TERMINATING = PHASE_TERMINATING

    @classmethod
    def parse(cls, value: str | None) -> Phase:
        """Parse a stored phase. Values this operator never writes read as unset."""
        try:
            return cls(value or "")
        except ValueError:
            logger.warning(f"Ignoring unknown phase {value!r}")
            return cls.UNSET


# Legal phase edges. Terminating is reachable from every phase and is terminal.
PHASE_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.UNSET: frozenset({Phase.PROVISIONING, Phase.TERMINATING}),
    Phase.PROVISIONING: frozenset({Phase.READY, Phase.HALTED, Phase.TERMINATING}),
    Phase.READY: frozenset({Phase.HALTED, Phase.TERMINATING}),
    Phase.HALTED: frozenset({Phase.TERMINATING}),
    Phase.TERMINATING: frozenset(),
}

# Un-halting re-enters provisioning. This is the one edge that moves a phase
# backwards: a resumed database has to pass the restore gate and the Ready
# write again. Only the create orchestrator may take it.
RESUME_TRANSITION = (Phase.HALTED, Phase.PROVISIONING)


def is_legal_transition(current: Phase, target: Phase, allow_resume: bool = False) -> bool:
    """Check whether moving from ``current`` to ``target`` is permitted.

    Rewriting the current phase is not a transition and is always allowed.
    """
    if current == target:
        return True
    if allow_resume and (current, target) == RESUME_TRANSITION:
        return True
    return target in PHASE_TRANSITIONS[current]


class TerminationPolicy(str, Enum):
    """What happens to storage and secrets when the resource is deleted."""

    HALT = TERMINATION_POLICY_HALT
    DELETE = TERMINATION_POLICY_DELETE
    WIPE_OUT = TERMINATION_POLICY_WIPE_OUT

    @classmethod
    def parse(cls, value: str | None) -> TerminationPolicy:
        """Parse a policy string; ``Pause`` is the deprecated spelling of ``Halt``.

        Raises:
            ValueError: If the policy is unknown
        """
        if not value:
            return cls.DELETE
        if value == TERMINATION_POLICY_PAUSE:
            return cls.HALT
        return cls(value)


class Verb(str, Enum):
    """Outcome of an ensure (create-or-patch) call."""

    CREATED = "created"
    PATCHED = "patched"
    UNCHANGED = "unchanged"


@dataclass
class MonitorSpec:
    agent: str
    exporter_port: int = DEFAULT_EXPORTER_PORT
    service_monitor_labels: dict[str, str] = field(default_factory=dict)
    interval: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MonitorSpec:
        prometheus = data.get("prometheus") or {}
        exporter = prometheus.get("exporter") or {}
        service_monitor = prometheus.get("serviceMonitor") or {}
        return cls(
            agent=data.get("agent", ""),
            exporter_port=int(exporter.get("port", DEFAULT_EXPORTER_PORT)),
            service_monitor_labels=dict(service_monitor.get("labels") or {}),
            interval=service_monitor.get("interval"),
        )


@dataclass
class DatabaseSpec:
    """Desired state read from ``spec``. Treated as read-only input."""

    version: str = ""
    replicas: int = 1
    halted: bool = False
    termination_policy_raw: str | None = None
    wait_for_initial_restore: bool = False
    monitor: MonitorSpec | None = None
    storage_type: str = STORAGE_TYPE_DURABLE
    storage: dict[str, Any] | None = None
    auth_secret_name: str | None = None
    service_template: dict[str, Any] = field(default_factory=dict)
    pod_template: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatabaseSpec:
        init = data.get("init") or {}
        monitor = data.get("monitor")
        auth_secret = data.get("authSecret") or {}
        replicas = data.get("replicas")
        return cls(
            version=str(data.get("version") or ""),
            replicas=1 if replicas is None else int(replicas),
            halted=bool(data.get("halted", False)),
            termination_policy_raw=data.get("terminationPolicy"),
            wait_for_initial_restore=bool(init.get("waitForInitialRestore", False)),
            monitor=MonitorSpec.from_dict(monitor) if monitor else None,
            storage_type=data.get("storageType") or STORAGE_TYPE_DURABLE,
            storage=dict(data["storage"]) if data.get("storage") else None,
            auth_secret_name=auth_secret.get("name"),
            service_template=dict(data.get("serviceTemplate") or {}),
            pod_template=dict(data.get("podTemplate") or {}),
        )

    @property
    def termination_policy(self) -> TerminationPolicy:
        return TerminationPolicy.parse(self.termination_policy_raw)


@dataclass
class DatabaseStatus:
    """Observed state from ``status``. Owned by this operator."""

    phase: Phase = Phase.UNSET
    conditions: list[dict[str, Any]] = field(default_factory=list)
    observed_generation: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> DatabaseStatus:
        data = data or {}
        return cls(
            phase=Phase.parse(data.get("phase")),
            conditions=[dict(c) for c in data.get("conditions") or []],
            observed_generation=int(data.get("observedGeneration") or 0),
        )


@dataclass
class DatabaseResource:
    """A PerconaXtraDB object as seen by one reconcile."""

    name: str
    namespace: str
    uid: str
    generation: int
    spec: DatabaseSpec
    status: DatabaseStatus
    labels: dict[str, str] = field(default_factory=dict)
    deletion_timestamp: str | None = None

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> DatabaseResource:
        """Build a resource view from a raw object (kopf body or API dict)."""
        meta = body.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", "default"),
            uid=meta.get("uid", ""),
            generation=int(meta.get("generation") or 0),
            spec=DatabaseSpec.from_dict(body.get("spec") or {}),
            status=DatabaseStatus.from_dict(body.get("status")),
            labels=dict(meta.get("labels") or {}),
            deletion_timestamp=meta.get("deletionTimestamp"),
        )

    @property
    def is_cluster(self) -> bool:
        """Multi-node (Galera) topology."""
        return self.spec.replicas > 1

    @property
    def meta(self) -> dict[str, Any]:
        """Metadata subset used for structured logs."""
        return {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "generation": self.generation,
        }

    @property
    def object_ref(self) -> dict[str, Any]:
        """Body-shaped reference that events are attached to."""
        return {
            "apiVersion": API_GROUP_VERSION,
            "kind": KIND_PERCONA_XTRADB,
            "metadata": {"name": self.name, "namespace": self.namespace, "uid": self.uid},
        }
