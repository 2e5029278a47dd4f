"""Status subresource writes with optimistic concurrency."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..constants import API_GROUP, API_VERSION, PLURAL_PERCONA_XTRADB
from ..models import DatabaseResource, DatabaseStatus, Phase, is_legal_transition
from ..utils.errors import PhaseTransitionError
from ..utils.rate_limit import rate_limit_k8s
from .kube import KubeContext, is_conflict

logger = logging.getLogger(__name__)

StatusMutator = Callable[[dict[str, Any]], None]


def _read(ctx: KubeContext, db: DatabaseResource) -> dict[str, Any]:
    return ctx.to_dict(
        rate_limit_k8s(ctx.custom_objects.get_namespaced_custom_object_status)(
            group=API_GROUP,
            version=API_VERSION,
            namespace=db.namespace,
            plural=PLURAL_PERCONA_XTRADB,
            name=db.name,
        )
    )


def update_status(ctx: KubeContext, db: DatabaseResource, mutate: StatusMutator) -> dict[str, Any]:
    """Read-modify-write the status of ``db``.

    ``mutate`` receives a copy of the freshest status and edits it in place.
    It may raise to abort the write. The write carries the resourceVersion
    that was read, and a 409 conflict restarts from a fresh read, up to
    ``status_update_retries`` times. Nothing is written when the mutation
    leaves the status unchanged.

    Args:
        ctx: Kubernetes context
        db: Database whose status is written; its ``status`` is refreshed
        mutate: Callback editing the status dict

    Returns:
        The status as stored after the call

    Raises:
        ApiException: If the write still conflicts after all retries, or on
            any other API error
    """
    attempts = max(1, ctx.settings.status_update_retries)
    attempt = 0
    while True:
        attempt += 1
        obj = _read(ctx, db)
        current = obj.get("status") or {}
        desired = copy.deepcopy(current)
        mutate(desired)

        if desired == current:
            db.status = DatabaseStatus.from_dict(current)
            return current

        obj["status"] = desired
        try:
            rate_limit_k8s(ctx.custom_objects.replace_namespaced_custom_object_status)(
                group=API_GROUP,
                version=API_VERSION,
                namespace=db.namespace,
                plural=PLURAL_PERCONA_XTRADB,
                name=db.name,
                body=obj,
            )
        except ApiException as e:
            if not is_conflict(e) or attempt >= attempts:
                raise
            metrics.status_conflicts_total.inc()
            logger.info(f"Status of {db.namespace}/{db.name} changed concurrently, retrying ({attempt}/{attempts})")
            continue

        db.status = DatabaseStatus.from_dict(desired)
        return desired


def set_phase(
    ctx: KubeContext,
    db: DatabaseResource,
    phase: Phase,
    observed_generation: int | None = None,
    allow_resume: bool = False,
    conditions_fn: Callable[[list[dict[str, Any]]], list[dict[str, Any]]] | None = None,
) -> None:
    """Write a new phase, validating the edge against the stored phase.

    Args:
        ctx: Kubernetes context
        db: Database to update
        phase: Target phase
        observed_generation: Generation to record; never lowers the stored value
        allow_resume: Accept the Halted -> Provisioning edge
        conditions_fn: Optional edit of the conditions applied in the same write

    Raises:
        PhaseTransitionError: If the edge from the stored phase is not legal
    """
    previous: dict[str, Phase] = {}

    def mutate(status: dict[str, Any]) -> None:
        current = Phase.parse(status.get("phase"))
        if not is_legal_transition(current, phase, allow_resume=allow_resume):
            raise PhaseTransitionError(
                f"Illegal phase transition {current.value or '<unset>'} -> {phase.value} "
                f"for {db.namespace}/{db.name}"
            )
        previous["phase"] = current
        status["phase"] = phase.value
        if observed_generation is not None:
            status["observedGeneration"] = max(int(status.get("observedGeneration") or 0), observed_generation)
        if conditions_fn is not None:
            status["conditions"] = conditions_fn(list(status.get("conditions") or []))

    update_status(ctx, db, mutate)

    from_phase = previous["phase"]
    if from_phase != phase:
        logger.info(f"Phase of {db.namespace}/{db.name}: {from_phase.value or '<unset>'} -> {phase.value}")
        metrics.phase_transitions_total.labels(from_phase=from_phase.value or "unset", to_phase=phase.value).inc()
