"""Termination-policy driven ownership of storage claims and secrets.

Owner references decide what the garbage collector removes once the
PerconaXtraDB object is gone. At termination time the policy is turned into a
plan of actions per dependent class, and the plan is applied to every claim
and secret belonging to the database.

Applying the same policy twice issues no writes the second time: objects
already marked for deletion are not deleted again, and owner references are
only patched when they differ from the desired set.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..builders.offshoots import offshoot_selector, owner_reference, persistent_secret_names
from ..models import DatabaseResource, TerminationPolicy
from ..utils.errors import OwnershipError
from ..utils.rate_limit import rate_limit_k8s
from .kube import KubeContext, is_not_found

logger = logging.getLogger(__name__)


class DependentClass(str, Enum):
    STORAGE = "storage"
    SECRETS = "secrets"


class OwnershipAction(str, Enum):
    ATTACH = "attach"
    DETACH = "detach"
    DESTROY = "destroy"


class CascadeOutcome(str, Enum):
    """What the garbage collector removes after the database is deleted."""

    STORAGE_AND_SECRETS = "storage_and_secrets"
    STORAGE_ONLY = "storage_only"
    NONE = "none"


OwnershipPlan = dict[DependentClass, tuple[OwnershipAction, ...]]


def plan_ownership(policy: TerminationPolicy) -> OwnershipPlan:
    """Map a termination policy to the actions taken per dependent class.

    Args:
        policy: Termination policy of the database

    Returns:
        Ordered actions for storage claims and for secrets
    """
    if policy == TerminationPolicy.WIPE_OUT:
        return {
            DependentClass.STORAGE: (OwnershipAction.DESTROY, OwnershipAction.ATTACH),
            DependentClass.SECRETS: (OwnershipAction.DESTROY, OwnershipAction.ATTACH),
        }
    if policy == TerminationPolicy.DELETE:
        return {
            DependentClass.STORAGE: (OwnershipAction.ATTACH,),
            DependentClass.SECRETS: (OwnershipAction.DETACH,),
        }
    return {
        DependentClass.STORAGE: (OwnershipAction.DETACH,),
        DependentClass.SECRETS: (OwnershipAction.DETACH,),
    }


def cascade_outcome(policy: TerminationPolicy) -> CascadeOutcome:
    plan = plan_ownership(policy)
    storage_owned = OwnershipAction.ATTACH in plan[DependentClass.STORAGE]
    secrets_owned = OwnershipAction.ATTACH in plan[DependentClass.SECRETS]
    if storage_owned and secrets_owned:
        return CascadeOutcome.STORAGE_AND_SECRETS
    if storage_owned:
        return CascadeOutcome.STORAGE_ONLY
    return CascadeOutcome.NONE


class _Dependents:
    """Typed-API adapter for one dependent class."""

    def __init__(self, ctx: KubeContext, dependent: DependentClass):
        self.ctx = ctx
        self.dependent = dependent
        self.kind = "persistent_volume_claim" if dependent == DependentClass.STORAGE else "secret"

    def _call(self, verb: str, **kwargs: Any) -> Any:
        fn = getattr(self.ctx.core_v1, f"{verb}_namespaced_{self.kind}")
        return rate_limit_k8s(fn)(**kwargs)

    def select(self, db: DatabaseResource) -> list[dict[str, Any]]:
        """List the objects of this class belonging to ``db``, deduplicated by name."""
        found: dict[str, dict[str, Any]] = {}
        listing = self.ctx.to_dict(self._call("list", namespace=db.namespace, label_selector=offshoot_selector(db)))
        for item in listing.get("items") or []:
            found[item["metadata"]["name"]] = item

        if self.dependent == DependentClass.SECRETS:
            for name in persistent_secret_names(db):
                if name in found:
                    continue
                try:
                    found[name] = self.ctx.to_dict(self._call("read", name=name, namespace=db.namespace))
                except ApiException as e:
                    if not is_not_found(e):
                        raise
        return list(found.values())

    def delete(self, name: str, namespace: str) -> None:
        self._call("delete", name=name, namespace=namespace)

    def set_owner_references(self, name: str, namespace: str, refs: list[dict[str, Any]]) -> None:
        patch = [{"op": "add", "path": "/metadata/ownerReferences", "value": refs}]
        self._call("patch", name=name, namespace=namespace, body=patch)


def _is_attached(refs: list[dict[str, Any]], db: DatabaseResource) -> bool:
    ours = [ref for ref in refs if ref.get("uid") == db.uid]
    return len(ours) == 1 and ours[0].get("controller") is True


def _is_detached(refs: list[dict[str, Any]], db: DatabaseResource) -> bool:
    return all(ref.get("uid") != db.uid for ref in refs)


def _apply_action(
    deps: _Dependents,
    db: DatabaseResource,
    item: dict[str, Any],
    action: OwnershipAction,
) -> None:
    meta = item.get("metadata") or {}
    name = meta.get("name", "")
    namespace = meta.get("namespace") or db.namespace
    resource = deps.dependent.value

    try:
        if action == OwnershipAction.DESTROY:
            if meta.get("deletionTimestamp"):
                metrics.ownership_operations_total.labels(resource=resource, action=action.value, result="skipped").inc()
                return
            try:
                deps.delete(name, namespace)
            except ApiException as e:
                if not is_not_found(e):
                    raise
            logger.info(f"Deleted {resource} {namespace}/{name}")
            metrics.ownership_operations_total.labels(resource=resource, action=action.value, result="success").inc()
            return

        current = list(meta.get("ownerReferences") or [])
        attach = action == OwnershipAction.ATTACH
        if (attach and _is_attached(current, db)) or (not attach and _is_detached(current, db)):
            metrics.ownership_operations_total.labels(resource=resource, action=action.value, result="skipped").inc()
            return

        refs = [ref for ref in current if ref.get("uid") != db.uid]
        if attach:
            refs.append(owner_reference(db))
        try:
            deps.set_owner_references(name, namespace, refs)
        except ApiException as e:
            # Already collected after a destroy
            if is_not_found(e):
                return
            raise
        meta["ownerReferences"] = refs
        logger.info(f"Owner reference {action.value} on {resource} {namespace}/{name}")
        metrics.ownership_operations_total.labels(resource=resource, action=action.value, result="success").inc()
    except ApiException as e:
        metrics.ownership_operations_total.labels(resource=resource, action=action.value, result="error").inc()
        raise OwnershipError(f"Failed to {action.value} {resource} {namespace}/{name}: {e.reason}") from e


def apply_ownership_plan(ctx: KubeContext, db: DatabaseResource, plan: OwnershipPlan) -> None:
    """Execute ``plan`` against the claims and secrets belonging to ``db``.

    Raises:
        OwnershipError: If listing or mutating a dependent object fails
    """
    for dependent, actions in plan.items():
        deps = _Dependents(ctx, dependent)
        try:
            items = deps.select(db)
        except ApiException as e:
            raise OwnershipError(
                f"Failed to list {dependent.value} of {db.namespace}/{db.name}: {e.reason}"
            ) from e
        for item in items:
            for action in actions:
                _apply_action(deps, db, item, action)


def apply_termination_ownership(
    ctx: KubeContext, db: DatabaseResource, policy: TerminationPolicy | None = None
) -> CascadeOutcome:
    """Apply the ownership plan for a termination policy (defaults to the database's own).

    Returns:
        What the garbage collector will remove once the database is gone
    """
    if policy is None:
        policy = db.spec.termination_policy
    apply_ownership_plan(ctx, db, plan_ownership(policy))
    return cascade_outcome(policy)
