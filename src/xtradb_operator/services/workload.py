"""Scaling the database workload down for halt."""

from __future__ import annotations

import logging
import time

from kubernetes.client.exceptions import ApiException

from ..constants import FIELD_MANAGER
from ..models import DatabaseResource
from ..utils.errors import HaltTimeoutError
from ..utils.rate_limit import rate_limit_k8s
from .kube import KubeContext, is_not_found

logger = logging.getLogger(__name__)


def _read_statefulset(ctx: KubeContext, db: DatabaseResource) -> dict | None:
    try:
        return ctx.to_dict(
            rate_limit_k8s(ctx.apps_v1.read_namespaced_stateful_set)(name=db.name, namespace=db.namespace)
        )
    except ApiException as e:
        if is_not_found(e):
            return None
        raise


def halt_database(ctx: KubeContext, db: DatabaseResource) -> bool:
    """Scale the StatefulSet to zero replicas.

    Returns:
        True if a scale-down was issued, False if there was nothing to do
    """
    sts = _read_statefulset(ctx, db)
    if sts is None:
        logger.info(f"StatefulSet {db.namespace}/{db.name} not found, nothing to halt")
        return False
    if (sts.get("spec") or {}).get("replicas") == 0:
        return False

    rate_limit_k8s(ctx.apps_v1.patch_namespaced_stateful_set)(
        name=db.name,
        namespace=db.namespace,
        body={"spec": {"replicas": 0}},
        field_manager=FIELD_MANAGER,
    )
    logger.info(f"Scaled StatefulSet {db.namespace}/{db.name} to 0 replicas")
    return True


def is_paused(ctx: KubeContext, db: DatabaseResource) -> bool:
    """Check whether no database pod is left running. A missing StatefulSet counts as paused."""
    sts = _read_statefulset(ctx, db)
    if sts is None:
        return True
    return int((sts.get("status") or {}).get("replicas") or 0) == 0


def wait_until_paused(ctx: KubeContext, db: DatabaseResource) -> None:
    """Poll until the workload has no replicas left.

    Raises:
        HaltTimeoutError: If pods are still running after ``halt_timeout_seconds``
    """
    settings = ctx.settings
    deadline = time.monotonic() + settings.halt_timeout_seconds
    while not is_paused(ctx, db):
        if time.monotonic() >= deadline:
            raise HaltTimeoutError(
                f"StatefulSet {db.namespace}/{db.name} still has running replicas "
                f"after {settings.halt_timeout_seconds:.0f}s"
            )
        time.sleep(settings.halt_poll_interval_seconds)
