"""Idempotent create-or-patch of the objects a PerconaXtraDB depends on.

Each ``ensure_*`` function reads the live object, creates it when absent and
patches it only when the desired fields differ, reporting which of the three
happened as a :class:`~xtradb_operator.models.Verb`. Running any of them twice
against an unchanged spec reports ``unchanged`` the second time.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable

from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from .. import metrics
from ..builders import resources
from ..builders.offshoots import auth_secret_name, stats_service_name
from ..constants import (
    AGENT_PROMETHEUS_OPERATOR,
    APPCATALOG_GROUP,
    APPCATALOG_VERSION,
    FIELD_MANAGER,
    MONITORING_GROUP,
    MONITORING_VERSION,
    PLURAL_APP_BINDING,
    PLURAL_SERVICE_MONITOR,
)
from ..models import DatabaseResource, Verb
from ..utils.rate_limit import rate_limit_k8s
from .kube import KubeContext, is_not_found

logger = logging.getLogger(__name__)

QUANTITY_KEYS = frozenset({"limits", "requests"})


def same_quantity(desired: Any, live: Any) -> bool:
    """Compare two resource quantities by value (``1`` equals ``"1"``, ``"0.5"`` equals ``"500m"``)."""
    if desired == live:
        return True
    try:
        return parse_quantity(desired) == parse_quantity(live)
    except (ValueError, TypeError):
        return False


def is_subset(desired: Any, live: Any, quantities: bool = False) -> bool:
    """Check that every field set in ``desired`` has the same value in ``live``.

    Fields only present in ``live`` (server defaults, status) are ignored.
    Lists must have the same length and match element-wise. Values under
    ``limits`` and ``requests`` are compared as quantities, since the API
    server stores them in canonical form.
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(
            key in live and is_subset(value, live[key], quantities=quantities or key in QUANTITY_KEYS)
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(is_subset(d, l) for d, l in zip(desired, live))
    if quantities:
        return same_quantity(desired, live)
    return desired == live


def _timed_call(operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    start_time = time.time()
    try:
        result = rate_limit_k8s(fn)(**kwargs)
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
        return result
    except ApiException as e:
        result_label = "not_found" if e.status == 404 else "error"
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result_label).inc()
        raise
    finally:
        duration = time.time() - start_time
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(duration)


def create_or_patch(
    ctx: KubeContext,
    resource: str,
    read: Callable[[], Any],
    create: Callable[[dict[str, Any]], Any],
    patch: Callable[[dict[str, Any]], Any],
    body: dict[str, Any],
    patch_body: dict[str, Any] | None = None,
) -> Verb:
    """Create ``body`` if absent, otherwise patch it when it drifted.

    Args:
        ctx: Kubernetes context
        resource: Resource name used for metrics and logs
        read: Reads the live object, raising a 404 ApiException if absent
        create: Creates the object from a body
        patch: Patches the live object with a body
        body: Full desired object, used on create
        patch_body: Mutable subset to compare and patch (defaults to ``body``)

    Returns:
        The verb describing what happened
    """
    name = body["metadata"]["name"]
    try:
        live = _timed_call(f"read_{resource}", read)
    except ApiException as e:
        if not is_not_found(e):
            raise
        _timed_call(f"create_{resource}", create, body=body)
        logger.info(f"Created {resource} {body['metadata']['namespace']}/{name}")
        metrics.dependent_operations_total.labels(resource=resource, verb=Verb.CREATED.value).inc()
        return Verb.CREATED

    desired = patch_body if patch_body is not None else body
    if is_subset(desired, ctx.to_dict(live)):
        metrics.dependent_operations_total.labels(resource=resource, verb=Verb.UNCHANGED.value).inc()
        return Verb.UNCHANGED

    _timed_call(f"patch_{resource}", patch, body=desired)
    logger.info(f"Patched {resource} {body['metadata']['namespace']}/{name}")
    metrics.dependent_operations_total.labels(resource=resource, verb=Verb.PATCHED.value).inc()
    return Verb.PATCHED


def _ensure_core(ctx: KubeContext, api: Any, kind: str, body: dict[str, Any], patch_body: dict[str, Any] | None = None) -> Verb:
    """create_or_patch for a namespaced typed API (``read_namespaced_<kind>`` etc.)."""
    name = body["metadata"]["name"]
    namespace = body["metadata"]["namespace"]
    return create_or_patch(
        ctx,
        kind,
        read=lambda: getattr(api, f"read_namespaced_{kind}")(name=name, namespace=namespace),
        create=lambda body: getattr(api, f"create_namespaced_{kind}")(
            namespace=namespace, body=body, field_manager=FIELD_MANAGER
        ),
        patch=lambda body: getattr(api, f"patch_namespaced_{kind}")(
            name=name, namespace=namespace, body=body, field_manager=FIELD_MANAGER
        ),
        body=body,
        patch_body=patch_body,
    )


def _ensure_custom(
    ctx: KubeContext,
    group: str,
    version: str,
    plural: str,
    body: dict[str, Any],
) -> Verb:
    name = body["metadata"]["name"]
    namespace = body["metadata"]["namespace"]
    api = ctx.custom_objects
    return create_or_patch(
        ctx,
        plural,
        read=lambda: api.get_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, name=name
        ),
        create=lambda body: api.create_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, body=body
        ),
        patch=lambda body: api.patch_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, name=name, body=body
        ),
        body=body,
        patch_body={"metadata": {"labels": body["metadata"]["labels"]}, "spec": body["spec"]},
    )


def ensure_governing_service(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the headless service that names the database pods."""
    body = resources.build_governing_service(db)
    return _ensure_core(ctx, ctx.core_v1, "service", body, resources.service_patch(body))


def ensure_rbac(ctx: KubeContext, db: DatabaseResource) -> list[Verb]:
    """Ensure ServiceAccount, Role and RoleBinding for the database pods.

    Returns:
        One verb per object, in that order
    """
    verbs = [_ensure_core(ctx, ctx.core_v1, "service_account", resources.build_service_account(db))]

    role = resources.build_role(db)
    role_patch = {"metadata": {"labels": role["metadata"]["labels"]}, "rules": role["rules"]}
    verbs.append(_ensure_core(ctx, ctx.rbac_v1, "role", role, role_patch))

    # roleRef is immutable, only subjects can drift
    binding = resources.build_role_binding(db)
    verbs.append(
        _ensure_core(
            ctx,
            ctx.rbac_v1,
            "role_binding",
            binding,
            {"metadata": {"labels": binding["metadata"]["labels"]}, "subjects": binding["subjects"]},
        )
    )
    return verbs


def ensure_service(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the primary client-facing service."""
    body = resources.build_service(db)
    return _ensure_core(ctx, ctx.core_v1, "service", body, resources.service_patch(body))


def ensure_database_secret(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the root credentials secret exists.

    An existing secret is never rewritten: the password it holds is the one
    the data directory was initialised with.
    """
    name = auth_secret_name(db)
    try:
        _timed_call("read_secret", ctx.core_v1.read_namespaced_secret, name=name, namespace=db.namespace)
        metrics.dependent_operations_total.labels(resource="secret", verb=Verb.UNCHANGED.value).inc()
        return Verb.UNCHANGED
    except ApiException as e:
        if not is_not_found(e):
            raise

    if db.spec.auth_secret_name:
        # A user-supplied secret name that does not exist yet gets generated
        # credentials under that name.
        logger.info(f"Secret {db.namespace}/{name} referenced by spec not found, generating it")

    body = resources.build_auth_secret(db, secrets.token_urlsafe(16))
    _timed_call(
        "create_secret",
        ctx.core_v1.create_namespaced_secret,
        namespace=db.namespace,
        body=body,
        field_manager=FIELD_MANAGER,
    )
    logger.info(f"Created secret {db.namespace}/{name}")
    metrics.dependent_operations_total.labels(resource="secret", verb=Verb.CREATED.value).inc()
    return Verb.CREATED


def ensure_statefulset(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the StatefulSet running the database pods."""
    body = resources.build_statefulset(db, ctx.settings)
    return _ensure_core(ctx, ctx.apps_v1, "stateful_set", body, resources.statefulset_patch(body))


def ensure_app_binding(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the AppBinding used by backup/restore tooling to reach the database."""
    return _ensure_custom(
        ctx, APPCATALOG_GROUP, APPCATALOG_VERSION, PLURAL_APP_BINDING, resources.build_app_binding(db)
    )


def ensure_stats_service(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the service exposing the metrics exporter."""
    body = resources.build_stats_service(db)
    return _ensure_core(ctx, ctx.core_v1, "service", body, resources.service_patch(body))


def manage_monitor(ctx: KubeContext, db: DatabaseResource) -> Verb:
    """Ensure the monitoring companion objects for the configured agent.

    Returns:
        Verb of the stats service ensure
    """
    verb = ensure_stats_service(ctx, db)
    if db.spec.monitor is not None and db.spec.monitor.agent == AGENT_PROMETHEUS_OPERATOR:
        _ensure_custom(
            ctx,
            MONITORING_GROUP,
            MONITORING_VERSION,
            PLURAL_SERVICE_MONITOR,
            resources.build_service_monitor(db),
        )
    return verb


def delete_monitor(ctx: KubeContext, db: DatabaseResource) -> None:
    """Delete the monitoring companion objects. Missing objects are ignored."""
    name = stats_service_name(db)
    try:
        _timed_call(
            "delete_service_monitor",
            ctx.custom_objects.delete_namespaced_custom_object,
            group=MONITORING_GROUP,
            version=MONITORING_VERSION,
            namespace=db.namespace,
            plural=PLURAL_SERVICE_MONITOR,
            name=name,
        )
    except ApiException as e:
        if not is_not_found(e):
            raise

    try:
        _timed_call("delete_service", ctx.core_v1.delete_namespaced_service, name=name, namespace=db.namespace)
    except ApiException as e:
        if not is_not_found(e):
            raise
