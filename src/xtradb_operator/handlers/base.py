"""Base handler class with common functionality for CRD handlers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

import kopf

from .. import metrics
from ..constants import FINALIZER
from ..logging import log_resource_event
from ..models import DatabaseResource
from ..utils.errors import sanitize_exception
from ..utils.events import emit_invalid, emit_reconcile_failed, emit_reconcile_started

CONTROLLER = "xtradb-operator"

_T = TypeVar("_T")


class BaseHandler:
    """Base class for CRD handlers with common functionality."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "PerconaXtraDB")
        """
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _log(
        self,
        db: DatabaseResource,
        level: int,
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        log_resource_event(
            self.logger,
            controller=CONTROLLER,
            resource_kind=self.kind,
            resource_name=db.name,
            namespace=db.namespace,
            uid=db.uid,
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        db: DatabaseResource,
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message.

        Args:
            db: Database the message is about
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(db, logging.INFO, message, event, reason, **kwargs)

    def log_warning(
        self,
        db: DatabaseResource,
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(db, logging.WARNING, message, event, reason, **kwargs)

    def log_error(
        self,
        db: DatabaseResource,
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            db: Database the message is about
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()

        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__

        self._log(db, logging.ERROR, message, event, reason, **log_data)

    def handle_validation_error(self, db: DatabaseResource, error: Exception) -> None:
        """Report a rejected spec without raising.

        The reconcile ends here and is not retried; the next spec edit
        triggers a fresh attempt.
        """
        message = sanitize_exception(error)
        self.log_error(db, f"Invalid spec: {message}", error=error, reason="ValidationFailed")
        emit_invalid(db.object_ref, message)
        metrics.reconcile_total.labels(kind=self.kind, result="invalid").inc()

    def ensure_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Ensure finalizer is present in metadata."""
        finalizers = list(meta.get("finalizers", []))
        if FINALIZER not in finalizers:
            finalizers.append(FINALIZER)
            patch.metadata["finalizers"] = finalizers

    def remove_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Remove finalizer from metadata."""
        finalizers = list(meta.get("finalizers", []))
        if FINALIZER in finalizers:
            finalizers.remove(FINALIZER)
            patch.metadata["finalizers"] = finalizers if finalizers else None

    def reconcile_with_metrics(
        self,
        db: DatabaseResource,
        reconcile_fn: Callable[[], _T],
    ) -> _T:
        """Execute reconciliation with metrics and error handling.

        Args:
            db: Database being reconciled
            reconcile_fn: Function to execute for reconciliation

        Returns:
            Whatever ``reconcile_fn`` returned
        """
        emit_reconcile_started(db.object_ref)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        try:
            result = reconcile_fn()
            metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
            return result
        except Exception as e:
            sanitized_error = sanitize_exception(e)
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            self.log_error(db, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            emit_reconcile_failed(db.object_ref, f"Reconciliation failed: {sanitized_error}")
            metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(duration)

    def record_status(self, ready: bool) -> None:
        if ready:
            metrics.resource_status_total.labels(kind=self.kind, status="ready").inc()
        else:
            metrics.resource_status_total.labels(kind=self.kind, status="not_ready").inc()
