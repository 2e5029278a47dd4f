"""Kubernetes API clients bundled into one injectable context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from ..config import OperatorConfig


@dataclass
class KubeContext:
    """API clients and settings handed to every component of a reconcile.

    Built once at operator startup and stored in kopf's ``memo``; tests build
    one around fake APIs.
    """

    core_v1: Any
    apps_v1: Any
    rbac_v1: Any
    custom_objects: Any
    api_client: Any = field(default_factory=client.ApiClient)
    settings: OperatorConfig = field(default_factory=OperatorConfig)

    @classmethod
    def from_config(cls, settings: OperatorConfig | None = None) -> KubeContext:
        """Load in-cluster configuration, falling back to kubeconfig."""
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()

        api_client = client.ApiClient()
        return cls(
            core_v1=client.CoreV1Api(api_client),
            apps_v1=client.AppsV1Api(api_client),
            rbac_v1=client.RbacAuthorizationV1Api(api_client),
            custom_objects=client.CustomObjectsApi(api_client),
            api_client=api_client,
            settings=settings or OperatorConfig.from_env(),
        )

    def to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert a typed API model into its camelCase wire dict."""
        if obj is None:
            return {}
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)


def is_not_found(error: Exception) -> bool:
    """Check whether an exception is an API 404."""
    return isinstance(error, ApiException) and error.status == 404


def is_conflict(error: Exception) -> bool:
    """Check whether an exception is an API 409."""
    return isinstance(error, ApiException) and error.status == 409
