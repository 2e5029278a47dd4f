"""Handler for PerconaXtraDB CRD."""

from __future__ import annotations

import threading
from typing import Any

import kopf

from ..config import OperatorConfig
from ..constants import API_GROUP_VERSION, KIND_PERCONA_XTRADB, TERMINATION_POLICY_HALT
from ..models import DatabaseResource, Phase, TerminationPolicy, Verb
from ..services import ensure
from ..services.kube import KubeContext
from ..services.ownership import apply_termination_ownership
from ..services.restore_gate import (
    STAGE_BEFORE_READY,
    STAGE_BEFORE_WORKLOAD,
    GateDecision,
    check_restore_gate,
)
from ..services.status import set_phase
from ..services.workload import halt_database, wait_until_paused
from ..tracing import add_span_attribute, trace_span
from ..utils.conditions import set_provisioned_condition
from ..utils.errors import DatabaseValidationError, PolicyViolationError, sanitize_exception
from ..utils.events import (
    emit_halted,
    emit_monitor_delete_failed,
    emit_monitor_failed,
    emit_policy_violation,
    emit_successfully_created,
    emit_successfully_patched,
    emit_waiting_for_restore,
)
from ..validation import validate_database
from .base import BaseHandler


class PerconaXtraDBHandler(BaseHandler):
    """Handler for PerconaXtraDB resources."""

    def __init__(self):
        """Initialize PerconaXtraDB handler."""
        super().__init__(KIND_PERCONA_XTRADB)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def object_lock(self, db: DatabaseResource) -> threading.Lock:
        """Lock held by every pipeline working on this object.

        kopf timers run next to the change handlers of the same object, so
        the resync and an update can otherwise overlap.
        """
        with self._locks_guard:
            return self._locks.setdefault(db.uid, threading.Lock())

    def forget(self, db: DatabaseResource) -> None:
        with self._locks_guard:
            self._locks.pop(db.uid, None)

    def _validate(self, db: DatabaseResource) -> bool:
        try:
            validate_database(db)
        except DatabaseValidationError as e:
            self.handle_validation_error(db, e)
            return False
        return True

    def create(self, ctx: KubeContext, db: DatabaseResource) -> None:
        """Drive the database toward Ready.

        Returns early without error when the spec is invalid or the restore
        gate is closed. Any API failure propagates and kopf retries the whole
        pipeline, which is safe because every step is idempotent.
        """
        with trace_span("create_perconaxtradb", kind=KIND_PERCONA_XTRADB, attributes={"database.name": db.name}):
            # An invalid spec stops the pipeline here: no dependent is
            # touched and the monitoring stage does not run either.
            if not self._validate(db):
                return

            if db.status.phase == Phase.UNSET:
                set_phase(ctx, db, Phase.PROVISIONING)
            elif db.status.phase == Phase.HALTED:
                self.log_info(db, "Resuming halted database", reason="Resuming")
                set_phase(ctx, db, Phase.PROVISIONING, allow_resume=True)

            if check_restore_gate(db, STAGE_BEFORE_WORKLOAD) == GateDecision.WAIT:
                self.log_info(
                    db,
                    "Waiting for initial restore before starting cluster members",
                    reason="WaitingForRestore",
                )
                emit_waiting_for_restore(db.object_ref)
                return

            with trace_span("ensure_dependents", kind=KIND_PERCONA_XTRADB):
                verbs = [ensure.ensure_governing_service(ctx, db)]
                verbs.extend(ensure.ensure_rbac(ctx, db))
                verbs.append(ensure.ensure_service(ctx, db))
                verbs.append(ensure.ensure_database_secret(ctx, db))
                verbs.append(ensure.ensure_statefulset(ctx, db))

            if Verb.CREATED in verbs:
                emit_successfully_created(db.object_ref)
            elif Verb.PATCHED in verbs:
                emit_successfully_patched(db.object_ref)
            add_span_attribute("database.verbs", ",".join(v.value for v in verbs))

            ensure.ensure_app_binding(ctx, db)

            if check_restore_gate(db, STAGE_BEFORE_READY) == GateDecision.WAIT:
                self.log_info(db, "Waiting for initial restore before marking ready", reason="WaitingForRestore")
                emit_waiting_for_restore(db.object_ref)
                return

            set_phase(
                ctx,
                db,
                Phase.READY,
                observed_generation=db.generation,
                conditions_fn=lambda conditions: set_provisioned_condition(
                    conditions,
                    "The PerconaXtraDB database is successfully provisioned",
                    db.generation,
                ),
            )
            self.record_status(ready=True)

            if db.spec.monitor is not None:
                self.reconcile_monitor(ctx, db)

    def reconcile_monitor(self, ctx: KubeContext, db: DatabaseResource) -> None:
        """Best-effort monitoring stage. Failures are reported, never raised."""
        with trace_span("manage_monitor", kind=KIND_PERCONA_XTRADB):
            try:
                ensure.manage_monitor(ctx, db)
            except Exception as e:
                message = sanitize_exception(e)
                self.log_error(db, f"Failed to manage monitoring system: {message}", error=e, reason="FailedToCreate")
                emit_monitor_failed(db.object_ref, message)

    def halt(self, ctx: KubeContext, db: DatabaseResource) -> None:
        """Stop all database pods while keeping storage and secrets.

        Raises:
            PolicyViolationError: If the termination policy is not Halt
            HaltTimeoutError: If the pods do not stop in time
        """
        with trace_span("halt_perconaxtradb", kind=KIND_PERCONA_XTRADB, attributes={"database.name": db.name}):
            try:
                policy: TerminationPolicy | None = db.spec.termination_policy
            except ValueError:
                policy = None
            if policy != TerminationPolicy.HALT:
                current = policy.value if policy is not None else db.spec.termination_policy_raw
                message = (
                    f"Can't halt, since termination policy is '{current}'; "
                    f"set spec.terminationPolicy to '{TERMINATION_POLICY_HALT}' first"
                )
                self.log_warning(db, message, reason="PolicyViolation")
                emit_policy_violation(db.object_ref, message)
                raise PolicyViolationError(message)

            if not self._validate(db):
                return

            if db.status.phase == Phase.HALTED and db.status.observed_generation >= db.generation:
                return

            halt_database(ctx, db)
            wait_until_paused(ctx, db)

            # Halted is only reachable from Provisioning or Ready
            if db.status.phase == Phase.UNSET:
                set_phase(ctx, db, Phase.PROVISIONING)
            set_phase(ctx, db, Phase.HALTED, observed_generation=db.generation)
            self.record_status(ready=False)
            self.log_info(db, "Database halted", reason="Halted")
            emit_halted(db.object_ref)

    def terminate(self, ctx: KubeContext, db: DatabaseResource) -> None:
        """Apply the termination policy to dependents before the database goes away.

        Raises:
            OwnershipError: If ownership markers could not be adjusted
        """
        with trace_span("terminate_perconaxtradb", kind=KIND_PERCONA_XTRADB, attributes={"database.name": db.name}):
            try:
                set_phase(ctx, db, Phase.TERMINATING)
            except Exception as e:
                self.log_warning(
                    db,
                    f"Failed to record Terminating phase: {sanitize_exception(e)}",
                    reason="StatusUpdateFailed",
                )

            try:
                policy = db.spec.termination_policy
            except ValueError:
                self.log_warning(
                    db,
                    f"Unknown termination policy {db.spec.termination_policy_raw!r}, keeping all data",
                    reason="PolicyViolation",
                )
                policy = TerminationPolicy.HALT

            outcome = apply_termination_ownership(ctx, db, policy)
            self.log_info(
                db,
                f"Applied termination policy {policy.value}",
                reason="Terminated",
                cascade=outcome.value,
            )

            if db.spec.monitor is not None:
                try:
                    ensure.delete_monitor(ctx, db)
                except Exception as e:
                    message = sanitize_exception(e)
                    self.log_error(db, f"Failed to delete monitoring system: {message}", error=e, reason="FailedToDelete")
                    emit_monitor_delete_failed(db.object_ref, message)

    def reconcile(self, ctx: KubeContext, db: DatabaseResource, wait: bool = True) -> None:
        """Dispatch a reconcile trigger to halt or create.

        Args:
            ctx: Kubernetes context
            db: Database to reconcile
            wait: Block until a concurrent pipeline on the same object ends;
                when False the trigger is dropped instead
        """
        if db.deletion_timestamp:
            return

        lock = self.object_lock(db)
        if not lock.acquire(blocking=wait):
            self.log_info(db, "Reconcile already in progress, skipping resync", reason="ReconcileInProgress")
            return
        try:
            if db.spec.halted:
                self.reconcile_with_metrics(db, lambda: self.halt(ctx, db))
            else:
                self.reconcile_with_metrics(db, lambda: self.create(ctx, db))
        finally:
            lock.release()


_handler = PerconaXtraDBHandler()


@kopf.on.create(API_GROUP_VERSION, KIND_PERCONA_XTRADB)
@kopf.on.update(API_GROUP_VERSION, KIND_PERCONA_XTRADB)
@kopf.on.resume(API_GROUP_VERSION, KIND_PERCONA_XTRADB)
def handle_perconaxtradb(
    body: kopf.Body,
    meta: dict[str, Any],
    patch: kopf.Patch,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Reconcile a PerconaXtraDB on create, update and operator restart."""
    _handler.ensure_finalizer(meta, patch)
    _handler.reconcile(memo.kube, DatabaseResource.from_body(body))


@kopf.timer(API_GROUP_VERSION, KIND_PERCONA_XTRADB, interval=OperatorConfig.from_env().resync_interval_seconds)
def resync_perconaxtradb(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Periodic resync so the restore gate and drift are re-evaluated."""
    _handler.reconcile(memo.kube, DatabaseResource.from_body(body), wait=False)


@kopf.on.delete(API_GROUP_VERSION, KIND_PERCONA_XTRADB)
def handle_perconaxtradb_delete(
    body: kopf.Body,
    meta: dict[str, Any],
    patch: kopf.Patch,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Apply the termination policy, then let the object go."""
    db = DatabaseResource.from_body(body)
    with _handler.object_lock(db):
        _handler.reconcile_with_metrics(db, lambda: _handler.terminate(memo.kube, db))
    _handler.forget(db)
    _handler.remove_finalizer(meta, patch)
