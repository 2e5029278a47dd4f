"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_FAILED_TO_CREATE,
    EVENT_REASON_FAILED_TO_DELETE,
    EVENT_REASON_HALTED,
    EVENT_REASON_INVALID,
    EVENT_REASON_POLICY_VIOLATION,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_SUCCESSFUL,
    EVENT_REASON_WAITING_FOR_RESTORE,
)


def emit_event(
    obj: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        obj: Body-shaped object reference (apiVersion, kind, metadata)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        obj,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(obj: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(obj, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(obj: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(obj, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_invalid(obj: dict[str, Any], message: str) -> None:
    """Emit spec rejected event."""
    emit_event(obj, EVENT_REASON_INVALID, message, type_="Warning")


def emit_successfully_created(obj: dict[str, Any]) -> None:
    emit_event(obj, EVENT_REASON_SUCCESSFUL, "Successfully created PerconaXtraDB")


def emit_successfully_patched(obj: dict[str, Any]) -> None:
    emit_event(obj, EVENT_REASON_SUCCESSFUL, "Successfully patched PerconaXtraDB")


def emit_waiting_for_restore(obj: dict[str, Any]) -> None:
    """Emit event noting that provisioning waits for an external restore."""
    emit_event(
        obj,
        EVENT_REASON_WAITING_FOR_RESTORE,
        "Waiting for data to be restored by external initializer",
    )


def emit_halted(obj: dict[str, Any]) -> None:
    emit_event(obj, EVENT_REASON_HALTED, "Successfully halted PerconaXtraDB")


def emit_policy_violation(obj: dict[str, Any], message: str) -> None:
    emit_event(obj, EVENT_REASON_POLICY_VIOLATION, message, type_="Warning")


def emit_monitor_failed(obj: dict[str, Any], message: str) -> None:
    """Emit event for a failed monitoring reconcile."""
    emit_event(
        obj,
        EVENT_REASON_FAILED_TO_CREATE,
        f"Failed to manage monitoring system. Reason: {message}",
        type_="Warning",
    )


def emit_monitor_delete_failed(obj: dict[str, Any], message: str) -> None:
    """Emit event for a failed monitoring cleanup."""
    emit_event(
        obj,
        EVENT_REASON_FAILED_TO_DELETE,
        f"Failed to delete monitoring system. Reason: {message}",
        type_="Warning",
    )
