"""Names, labels and owner references shared by all dependent objects."""

from __future__ import annotations

from typing import Any

from ..constants import (
    API_GROUP_VERSION,
    KIND_PERCONA_XTRADB,
    LABEL_INSTANCE,
    LABEL_MANAGED_BY,
    LABEL_NAME,
    MANAGED_BY,
    RESOURCE_FQN,
)
from ..models import DatabaseResource


def offshoot_labels(db: DatabaseResource) -> dict[str, str]:
    """Labels carried by every object belonging to one database instance."""
    return {
        LABEL_NAME: RESOURCE_FQN,
        LABEL_INSTANCE: db.name,
        LABEL_MANAGED_BY: MANAGED_BY,
    }


def offshoot_selector(db: DatabaseResource) -> str:
    """Render the offshoot labels as a label selector string."""
    return ",".join(f"{key}={value}" for key, value in sorted(offshoot_labels(db).items()))


def owner_reference(db: DatabaseResource) -> dict[str, Any]:
    """Controller owner reference pointing at the database.

    A dependent carrying it is deleted by the garbage collector together with
    the database.
    """
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_PERCONA_XTRADB,
        "name": db.name,
        "uid": db.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def governing_service_name(db: DatabaseResource) -> str:
    return f"{db.name}-pods"


def auth_secret_name(db: DatabaseResource) -> str:
    return db.spec.auth_secret_name or f"{db.name}-auth"


def persistent_secret_names(db: DatabaseResource) -> list[str]:
    """Secrets that outlive the database unless the policy says otherwise."""
    return [auth_secret_name(db)]


def stats_service_name(db: DatabaseResource) -> str:
    return f"{db.name}-stats"
