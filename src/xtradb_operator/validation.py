"""Spec validation for PerconaXtraDB resources."""

from __future__ import annotations

from .constants import (
    AGENT_PROMETHEUS_BUILTIN,
    AGENT_PROMETHEUS_OPERATOR,
    MIN_CLUSTER_MEMBERS,
    STORAGE_TYPE_DURABLE,
    STORAGE_TYPE_EPHEMERAL,
)
from .models import DatabaseResource, TerminationPolicy
from .utils.errors import DatabaseValidationError

SUPPORTED_AGENTS = (AGENT_PROMETHEUS_OPERATOR, AGENT_PROMETHEUS_BUILTIN)
SUPPORTED_STORAGE_TYPES = (STORAGE_TYPE_DURABLE, STORAGE_TYPE_EPHEMERAL)


def validate_database(db: DatabaseResource) -> None:
    """Validate the desired state of a database.

    Args:
        db: Database to validate

    Raises:
        DatabaseValidationError: If the spec cannot be provisioned
    """
    spec = db.spec

    if not spec.version:
        raise DatabaseValidationError("spec.version is required")

    if spec.replicas < 1:
        raise DatabaseValidationError(f"spec.replicas must be at least 1, got {spec.replicas}")

    if db.is_cluster and spec.replicas < MIN_CLUSTER_MEMBERS:
        raise DatabaseValidationError(
            f"a PerconaXtraDB cluster needs at least {MIN_CLUSTER_MEMBERS} members, got {spec.replicas}"
        )

    try:
        policy = spec.termination_policy
    except ValueError:
        raise DatabaseValidationError(
            f"unknown spec.terminationPolicy {spec.termination_policy_raw!r}"
        ) from None

    if spec.storage_type not in SUPPORTED_STORAGE_TYPES:
        raise DatabaseValidationError(f"unknown spec.storageType {spec.storage_type!r}")

    if spec.storage_type == STORAGE_TYPE_DURABLE and not spec.storage:
        raise DatabaseValidationError("spec.storage is required for Durable storage")

    if spec.storage_type == STORAGE_TYPE_EPHEMERAL and policy == TerminationPolicy.HALT:
        raise DatabaseValidationError("terminationPolicy Halt cannot be used with Ephemeral storage")

    if spec.monitor is not None and spec.monitor.agent not in SUPPORTED_AGENTS:
        raise DatabaseValidationError(f"unknown spec.monitor.agent {spec.monitor.agent!r}")
