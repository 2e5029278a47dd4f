"""Builders for the objects a PerconaXtraDB owns."""

from __future__ import annotations

from typing import Any

from ..config import OperatorConfig
from ..constants import (
    AGENT_PROMETHEUS_BUILTIN,
    APPCATALOG_GROUP,
    APPCATALOG_VERSION,
    DATABASE_PORT,
    DATABASE_PORT_NAME,
    EXPORTER_PORT_NAME,
    KIND_APP_BINDING,
    KIND_SERVICE_MONITOR,
    LABEL_COMPONENT,
    MONITORING_GROUP,
    MONITORING_VERSION,
    ROOT_USER,
    STORAGE_TYPE_EPHEMERAL,
)
from ..models import DatabaseResource
from .offshoots import (
    auth_secret_name,
    governing_service_name,
    offshoot_labels,
    owner_reference,
    stats_service_name,
)

DATA_VOLUME = "data"
DATA_DIR = "/var/lib/mysql"
DB_CONTAINER = "perconaxtradb"
EXPORTER_CONTAINER = "exporter"


def _object_meta(db: DatabaseResource, name: str, owned: bool = True, **extra: Any) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "name": name,
        "namespace": db.namespace,
        "labels": offshoot_labels(db),
    }
    if owned:
        meta["ownerReferences"] = [owner_reference(db)]
    meta.update(extra)
    return meta


def build_governing_service(db: DatabaseResource) -> dict[str, Any]:
    """Headless service giving each pod a stable DNS name."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _object_meta(db, governing_service_name(db)),
        "spec": {
            "clusterIP": "None",
            "publishNotReadyAddresses": True,
            "selector": offshoot_labels(db),
            "ports": [{"name": DATABASE_PORT_NAME, "port": DATABASE_PORT, "protocol": "TCP"}],
        },
    }


def build_service(db: DatabaseResource) -> dict[str, Any]:
    """Primary client-facing service."""
    template_spec = db.spec.service_template.get("spec") or {}
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _object_meta(db, db.name),
        "spec": {
            "type": template_spec.get("type", "ClusterIP"),
            "selector": offshoot_labels(db),
            "ports": [
                {
                    "name": "primary",
                    "port": DATABASE_PORT,
                    "targetPort": DATABASE_PORT_NAME,
                    "protocol": "TCP",
                }
            ],
        },
    }


def service_patch(body: dict[str, Any]) -> dict[str, Any]:
    """Mutable subset of a service body (clusterIP cannot change)."""
    spec = {k: v for k, v in body["spec"].items() if k != "clusterIP"}
    return {"metadata": {"labels": body["metadata"]["labels"]}, "spec": spec}


def build_auth_secret(db: DatabaseResource, password: str) -> dict[str, Any]:
    """Root credentials. Not owned: retention follows the termination policy."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": _object_meta(db, auth_secret_name(db), owned=False),
        "type": "Opaque",
        "stringData": {"username": ROOT_USER, "password": password},
    }


def build_service_account(db: DatabaseResource) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _object_meta(db, db.name),
    }


def build_role(db: DatabaseResource) -> dict[str, Any]:
    """Permissions the database pods need for peer discovery."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "Role",
        "metadata": _object_meta(db, db.name),
        "rules": [
            {"apiGroups": [""], "resources": ["pods"], "verbs": ["get", "list", "watch"]},
            {"apiGroups": [""], "resources": ["endpoints"], "verbs": ["get"]},
        ],
    }


def build_role_binding(db: DatabaseResource) -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": _object_meta(db, db.name),
        "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "Role", "name": db.name},
        "subjects": [{"kind": "ServiceAccount", "name": db.name, "namespace": db.namespace}],
    }


def _password_env(db: DatabaseResource) -> dict[str, Any]:
    return {
        "name": "MYSQL_ROOT_PASSWORD",
        "valueFrom": {"secretKeyRef": {"name": auth_secret_name(db), "key": "password"}},
    }


def _database_container(db: DatabaseResource, settings: OperatorConfig) -> dict[str, Any]:
    image = settings.cluster_image if db.is_cluster else settings.standalone_image
    env = [_password_env(db)]
    if db.is_cluster:
        env += [
            {"name": "CLUSTER_NAME", "value": db.name},
            {"name": "GOVERNING_SERVICE", "value": governing_service_name(db)},
        ]

    container: dict[str, Any] = {
        "name": DB_CONTAINER,
        "image": f"{image}:{db.spec.version}",
        "ports": [{"name": DATABASE_PORT_NAME, "containerPort": DATABASE_PORT, "protocol": "TCP"}],
        "env": env,
        "volumeMounts": [{"name": DATA_VOLUME, "mountPath": DATA_DIR}],
    }

    resources = (db.spec.pod_template.get("spec") or {}).get("resources")
    if resources:
        container["resources"] = resources
    return container


def _exporter_container(db: DatabaseResource, settings: OperatorConfig) -> dict[str, Any]:
    port = db.spec.monitor.exporter_port  # type: ignore[union-attr]
    return {
        "name": EXPORTER_CONTAINER,
        "image": settings.exporter_image,
        "args": [f"--web.listen-address=:{port}"],
        "ports": [{"name": EXPORTER_PORT_NAME, "containerPort": port, "protocol": "TCP"}],
        "env": [
            _password_env(db),
            {"name": "DATA_SOURCE_NAME", "value": f"{ROOT_USER}:$(MYSQL_ROOT_PASSWORD)@(127.0.0.1:{DATABASE_PORT})/"},
        ],
    }


def build_statefulset(db: DatabaseResource, settings: OperatorConfig) -> dict[str, Any]:
    """StatefulSet running the database pods."""
    labels = offshoot_labels(db)
    containers = [_database_container(db, settings)]
    if db.spec.monitor is not None:
        containers.append(_exporter_container(db, settings))

    pod_spec: dict[str, Any] = {
        "serviceAccountName": db.name,
        "containers": containers,
    }
    spec: dict[str, Any] = {
        "replicas": db.spec.replicas,
        "serviceName": governing_service_name(db),
        "podManagementPolicy": "OrderedReady",
        "selector": {"matchLabels": labels},
        "template": {"metadata": {"labels": labels}, "spec": pod_spec},
    }

    if db.spec.storage_type == STORAGE_TYPE_EPHEMERAL:
        pod_spec["volumes"] = [{"name": DATA_VOLUME, "emptyDir": {}}]
    else:
        spec["volumeClaimTemplates"] = [
            {
                # Claims inherit these labels, which is how the offshoot
                # selector finds them at termination time
                "metadata": {"name": DATA_VOLUME, "labels": labels},
                "spec": db.spec.storage or {},
            }
        ]

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": _object_meta(db, db.name),
        "spec": spec,
    }


def statefulset_patch(body: dict[str, Any]) -> dict[str, Any]:
    """Mutable subset of a StatefulSet body."""
    return {
        "metadata": {"labels": body["metadata"]["labels"]},
        "spec": {
            "replicas": body["spec"]["replicas"],
            "template": body["spec"]["template"],
        },
    }


def build_app_binding(db: DatabaseResource) -> dict[str, Any]:
    """Connection details consumed by external backup/restore tooling."""
    return {
        "apiVersion": f"{APPCATALOG_GROUP}/{APPCATALOG_VERSION}",
        "kind": KIND_APP_BINDING,
        "metadata": _object_meta(db, db.name),
        "spec": {
            "type": "kubedb.com/perconaxtradb",
            "version": db.spec.version,
            "clientConfig": {
                "service": {"name": db.name, "scheme": "mysql", "port": DATABASE_PORT},
                "url": f"tcp({db.name}.{db.namespace}.svc:{DATABASE_PORT})/",
            },
            "secret": {"name": auth_secret_name(db)},
        },
    }


def stats_labels(db: DatabaseResource) -> dict[str, str]:
    return {**offshoot_labels(db), LABEL_COMPONENT: "database-stats"}


def build_stats_service(db: DatabaseResource) -> dict[str, Any]:
    """Service exposing the exporter sidecar."""
    monitor = db.spec.monitor
    if monitor is None:
        raise ValueError(f"{db.namespace}/{db.name} has no monitor configured")
    meta = _object_meta(db, stats_service_name(db))
    meta["labels"] = stats_labels(db)
    if monitor.agent == AGENT_PROMETHEUS_BUILTIN:
        meta["annotations"] = {
            "prometheus.io/scrape": "true",
            "prometheus.io/path": "/metrics",
            "prometheus.io/port": str(monitor.exporter_port),
        }
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": meta,
        "spec": {
            "selector": offshoot_labels(db),
            "ports": [
                {
                    "name": EXPORTER_PORT_NAME,
                    "port": monitor.exporter_port,
                    "targetPort": EXPORTER_PORT_NAME,
                    "protocol": "TCP",
                }
            ],
        },
    }


def build_service_monitor(db: DatabaseResource) -> dict[str, Any]:
    """prometheus-operator ServiceMonitor scraping the stats service."""
    monitor = db.spec.monitor
    if monitor is None:
        raise ValueError(f"{db.namespace}/{db.name} has no monitor configured")
    meta = _object_meta(db, stats_service_name(db))
    meta["labels"] = {**monitor.service_monitor_labels, **offshoot_labels(db)}
    return {
        "apiVersion": f"{MONITORING_GROUP}/{MONITORING_VERSION}",
        "kind": KIND_SERVICE_MONITOR,
        "metadata": meta,
        "spec": {
            "namespaceSelector": {"matchNames": [db.namespace]},
            "selector": {"matchLabels": stats_labels(db)},
            "endpoints": [
                {
                    "port": EXPORTER_PORT_NAME,
                    "path": "/metrics",
                    "interval": monitor.interval or "30s",
                }
            ],
        },
    }
