"""Restore gate: hold back provisioning until external data restore completes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from .. import metrics
from ..constants import COND_DATABASE_DATA_RESTORED, COND_DATABASE_PROVISIONED
from ..models import DatabaseResource
from ..utils.conditions import has_condition, is_condition_true

STAGE_BEFORE_WORKLOAD = "before_workload"
STAGE_BEFORE_READY = "before_ready"


class GateDecision(str, Enum):
    PROCEED = "proceed"
    WAIT = "wait"


def evaluate_restore_gate(conditions: list[dict[str, Any]] | None) -> GateDecision:
    """Decide whether provisioning may continue.

    Once a database has been provisioned the gate never blocks again. Before
    that, it blocks until the data-restored condition is True.

    Args:
        conditions: Status conditions of the database

    Returns:
        WAIT if the database was never provisioned and its data is not yet
        restored, PROCEED otherwise
    """
    if not has_condition(conditions, COND_DATABASE_PROVISIONED) and not is_condition_true(
        conditions, COND_DATABASE_DATA_RESTORED
    ):
        return GateDecision.WAIT
    return GateDecision.PROCEED


def gate_stage(db: DatabaseResource) -> str | None:
    """Point in the create pipeline where the gate applies, if at all.

    A cluster must not start its pods before the restore, so it is gated
    before the workload. A standalone server is started and restored in
    place, so only the Ready write is held back.
    """
    if not db.spec.wait_for_initial_restore:
        return None
    return STAGE_BEFORE_WORKLOAD if db.is_cluster else STAGE_BEFORE_READY


def check_restore_gate(db: DatabaseResource, stage: str) -> GateDecision:
    """Evaluate the gate for ``db`` if it applies at ``stage``."""
    if gate_stage(db) != stage:
        return GateDecision.PROCEED
    decision = evaluate_restore_gate(db.status.conditions)
    metrics.restore_gate_total.labels(stage=stage, decision=decision.value).inc()
    return decision
