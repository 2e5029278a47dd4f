"""Shared fixtures: an in-memory stand-in for the Kubernetes API."""

from __future__ import annotations

import copy
import functools
from typing import Any, Callable
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from xtradb_operator.config import OperatorConfig
from xtradb_operator.constants import (
    API_GROUP_VERSION,
    KIND_PERCONA_XTRADB,
    PLURAL_PERCONA_XTRADB,
)
from xtradb_operator.models import DatabaseResource
from xtradb_operator.services.kube import KubeContext

WRITE_VERBS = ("create", "patch", "delete", "replace_status")


def _merge(target: dict[str, Any], patch_body: dict[str, Any]) -> None:
    for key, value in patch_body.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _json_patch(target: dict[str, Any], ops: list[dict[str, Any]]) -> None:
    for op in ops:
        assert op["op"] in ("add", "replace"), op
        *parents, leaf = op["path"].strip("/").split("/")
        node = target
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = copy.deepcopy(op["value"])


def _matches(obj: dict[str, Any], label_selector: str | None) -> bool:
    if not label_selector:
        return True
    labels = (obj.get("metadata") or {}).get("labels") or {}
    for term in label_selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeCluster:
    """Object store keyed by (kind, namespace, name) recording every call.

    ``kind`` is the snake_case suffix of the typed API method
    (``stateful_set``, ``secret``) or the plural of a custom resource.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], ApiException] = {}
        self.status_conflicts = 0
        # When False, StatefulSets keep their running replicas after a scale-down
        self.scale_immediately = True
        self._uid = 0
        self._version = 0

    # helpers used by tests

    def add(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        obj = copy.deepcopy(body)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("namespace", "default")
        meta.setdefault("uid", self._next_uid())
        meta["resourceVersion"] = self._next_version()
        self.objects[(kind, meta["namespace"], meta["name"])] = obj
        return obj

    def get(self, kind: str, name: str, namespace: str = "default") -> dict[str, Any] | None:
        return self.objects.get((kind, namespace, name))

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [obj for (k, _, _), obj in self.objects.items() if k == kind]

    def fail(self, verb: str, kind: str, status: int = 500, reason: str = "Internal Server Error") -> None:
        self.failures[(verb, kind)] = ApiException(status=status, reason=reason)

    @property
    def writes(self) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[0] in WRITE_VERBS]

    def reset_calls(self) -> None:
        self.calls.clear()

    # API semantics

    def _next_uid(self) -> str:
        self._uid += 1
        return f"uid-{self._uid}"

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _record(self, verb: str, kind: str, name: str) -> None:
        self.calls.append((verb, kind, name))
        failure = self.failures.get((verb, kind))
        if failure is not None:
            raise failure

    def _existing(self, kind: str, name: str, namespace: str) -> dict[str, Any]:
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise ApiException(status=404, reason="Not Found")
        return obj

    def _sync_statefulset(self, kind: str, obj: dict[str, Any]) -> None:
        if kind == "stateful_set" and self.scale_immediately:
            obj.setdefault("status", {})["replicas"] = obj["spec"].get("replicas", 1)

    def read(self, kind: str, name: str, namespace: str, **_: Any) -> dict[str, Any]:
        self._record("read", kind, name)
        return copy.deepcopy(self._existing(kind, name, namespace))

    def create(self, kind: str, namespace: str, body: dict[str, Any], **_: Any) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self._record("create", kind, name)
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = self.add(kind, {**body, "metadata": {**body["metadata"], "namespace": namespace}})
        if kind == "stateful_set":
            obj["status"] = {"replicas": obj["spec"].get("replicas", 1)}
        return copy.deepcopy(obj)

    def patch(self, kind: str, name: str, namespace: str, body: Any, **_: Any) -> dict[str, Any]:
        self._record("patch", kind, name)
        obj = self._existing(kind, name, namespace)
        if isinstance(body, list):
            _json_patch(obj, body)
        else:
            _merge(obj, body)
        obj["metadata"]["resourceVersion"] = self._next_version()
        self._sync_statefulset(kind, obj)
        return copy.deepcopy(obj)

    def delete(self, kind: str, name: str, namespace: str, **_: Any) -> dict[str, Any]:
        self._record("delete", kind, name)
        obj = self._existing(kind, name, namespace)
        if obj["metadata"].get("finalizers"):
            obj["metadata"].setdefault("deletionTimestamp", "2026-01-01T00:00:00Z")
        else:
            del self.objects[(kind, namespace, name)]
        return {"status": "Success"}

    def list(self, kind: str, namespace: str, label_selector: str | None = None, **_: Any) -> dict[str, Any]:
        self._record("list", kind, "")
        items = [
            copy.deepcopy(obj)
            for (k, ns, _), obj in self.objects.items()
            if k == kind and ns == namespace and _matches(obj, label_selector)
        ]
        return {"items": items}

    def replace_status(self, kind: str, name: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        self._record("replace_status", kind, name)
        obj = self._existing(kind, name, namespace)
        if self.status_conflicts > 0:
            self.status_conflicts -= 1
            # Someone else wrote in between
            obj["metadata"]["resourceVersion"] = self._next_version()
            raise ApiException(status=409, reason="Conflict")
        if body["metadata"].get("resourceVersion") != obj["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        obj["status"] = copy.deepcopy(body.get("status") or {})
        obj["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(obj)


class FakeTypedApi:
    """Dispatches ``<verb>_namespaced_<kind>`` calls to the cluster."""

    def __init__(self, cluster: FakeCluster) -> None:
        self.cluster = cluster

    def __getattr__(self, attr: str) -> Callable[..., Any]:
        for verb in ("read", "create", "patch", "delete", "list"):
            prefix = f"{verb}_namespaced_"
            if attr.startswith(prefix):
                return functools.partial(getattr(self.cluster, verb), attr[len(prefix):])
        raise AttributeError(attr)


class FakeCustomObjectsApi:
    def __init__(self, cluster: FakeCluster) -> None:
        self.cluster = cluster

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, **_):
        return self.cluster.read(plural, name=name, namespace=namespace)

    def get_namespaced_custom_object_status(self, group, version, namespace, plural, name, **_):
        return self.cluster.read(plural, name=name, namespace=namespace)

    def create_namespaced_custom_object(self, group, version, namespace, plural, body, **_):
        return self.cluster.create(plural, namespace=namespace, body=body)

    def patch_namespaced_custom_object(self, group, version, namespace, plural, name, body, **_):
        return self.cluster.patch(plural, name=name, namespace=namespace, body=body)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name, **_):
        return self.cluster.delete(plural, name=name, namespace=namespace)

    def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body, **_):
        return self.cluster.replace_status(plural, name=name, namespace=namespace, body=body)


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    """Disable API call spacing in tests."""
    monkeypatch.setattr("xtradb_operator.utils.rate_limit._K8S_RATE_LIMIT_PER_SECOND", 0.0)


@pytest.fixture(autouse=True)
def mock_kopf_event():
    """Capture events instead of posting them."""
    with patch("xtradb_operator.utils.events.kopf.event") as mock_event:
        yield mock_event


@pytest.fixture
def event_reasons(mock_kopf_event) -> Callable[[], list[str]]:
    def _reasons() -> list[str]:
        return [call.kwargs["reason"] for call in mock_kopf_event.call_args_list]

    return _reasons


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def settings() -> OperatorConfig:
    return OperatorConfig(halt_poll_interval_seconds=0.0, halt_timeout_seconds=5.0)


@pytest.fixture
def kube_ctx(cluster, settings) -> KubeContext:
    typed = FakeTypedApi(cluster)
    return KubeContext(
        core_v1=typed,
        apps_v1=typed,
        rbac_v1=typed,
        custom_objects=FakeCustomObjectsApi(cluster),
        api_client=MagicMock(),
        settings=settings,
    )


def database_body(name: str = "demo", namespace: str = "default", **spec: Any) -> dict[str, Any]:
    """A PerconaXtraDB object with a valid standalone spec, overridable per field."""
    base_spec: dict[str, Any] = {
        "version": "5.7",
        "replicas": 1,
        "terminationPolicy": "Delete",
        "storageType": "Durable",
        "storage": {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": "1Gi"}},
        },
    }
    base_spec.update(spec)
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_PERCONA_XTRADB,
        "metadata": {"name": name, "namespace": namespace, "generation": 1},
        "spec": base_spec,
    }


@pytest.fixture
def add_database(cluster) -> Callable[..., DatabaseResource]:
    """Store a PerconaXtraDB in the fake cluster and return its typed view."""

    def _add(name: str = "demo", namespace: str = "default", **spec: Any) -> DatabaseResource:
        obj = cluster.add(PLURAL_PERCONA_XTRADB, database_body(name, namespace, **spec))
        return DatabaseResource.from_body(obj)

    return _add


@pytest.fixture
def load_database(cluster) -> Callable[..., DatabaseResource]:
    """Re-read a PerconaXtraDB as the next reconcile would see it."""

    def _load(name: str = "demo", namespace: str = "default") -> DatabaseResource:
        return DatabaseResource.from_body(copy.deepcopy(cluster.get(PLURAL_PERCONA_XTRADB, name, namespace)))

    return _load
