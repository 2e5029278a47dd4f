"""Tests for halting, resuming and terminating PerconaXtraDB resources."""

from __future__ import annotations

import kopf
import pytest

from xtradb_operator.builders.offshoots import offshoot_labels, owner_reference
from xtradb_operator.config import OperatorConfig
from xtradb_operator.constants import FINALIZER, PLURAL_PERCONA_XTRADB, PLURAL_SERVICE_MONITOR
from xtradb_operator.handlers.perconaxtradb import PerconaXtraDBHandler, handle_perconaxtradb_delete
from xtradb_operator.models import Phase
from xtradb_operator.utils.errors import HaltTimeoutError, PolicyViolationError


@pytest.fixture
def handler():
    return PerconaXtraDBHandler()


def _add_claim(cluster, db, name="data-demo-0", owned=False, finalizers=None):
    meta = {"name": name, "namespace": db.namespace, "labels": offshoot_labels(db)}
    if owned:
        meta["ownerReferences"] = [owner_reference(db)]
    if finalizers:
        meta["finalizers"] = list(finalizers)
    return cluster.add("persistent_volume_claim", {"metadata": meta, "spec": {}})


def _halt_spec(cluster, name="demo"):
    obj = cluster.get(PLURAL_PERCONA_XTRADB, name)
    obj["spec"]["halted"] = True
    obj["metadata"]["generation"] += 1


class TestHalt:
    """Test cases for the halt pipeline."""

    def test_halt_requires_halt_policy(self, handler, kube_ctx, cluster, add_database, load_database, event_reasons):
        """Test that halting under another policy is refused without touching status."""
        handler.create(kube_ctx, add_database(terminationPolicy="Delete"))
        _halt_spec(cluster)
        cluster.reset_calls()

        with pytest.raises(PolicyViolationError):
            handler.halt(kube_ctx, load_database())

        assert cluster.writes == []
        assert load_database().status.phase == Phase.READY
        assert "PolicyViolation" in event_reasons()

    def test_halt_scales_down_and_records_phase(self, handler, kube_ctx, cluster, add_database, load_database, event_reasons):
        """Test that halt stops the pods and writes Halted."""
        handler.create(kube_ctx, add_database(terminationPolicy="Halt"))
        _halt_spec(cluster)

        handler.halt(kube_ctx, load_database())

        sts = cluster.get("stateful_set", "demo")
        assert sts["spec"]["replicas"] == 0
        db = load_database()
        assert db.status.phase == Phase.HALTED
        assert db.status.observed_generation == 2
        assert "Halted" in event_reasons()

    def test_pause_alias_allows_halt(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that the deprecated Pause policy behaves as Halt."""
        handler.create(kube_ctx, add_database(terminationPolicy="Pause"))
        _halt_spec(cluster)

        handler.halt(kube_ctx, load_database())

        assert load_database().status.phase == Phase.HALTED

    def test_halt_is_idempotent(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that halting an already halted database writes nothing."""
        handler.create(kube_ctx, add_database(terminationPolicy="Halt"))
        _halt_spec(cluster)
        handler.halt(kube_ctx, load_database())
        cluster.reset_calls()

        handler.halt(kube_ctx, load_database())

        assert cluster.writes == []

    def test_halt_timeout_keeps_phase(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that pods that never stop leave the phase untouched."""
        handler.create(kube_ctx, add_database(terminationPolicy="Halt"))
        _halt_spec(cluster)
        cluster.scale_immediately = False
        kube_ctx.settings = OperatorConfig(halt_poll_interval_seconds=0.0, halt_timeout_seconds=0.0)

        with pytest.raises(HaltTimeoutError):
            handler.halt(kube_ctx, load_database())

        assert load_database().status.phase == Phase.READY

    def test_halt_before_first_provision(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that a database created halted passes through Provisioning."""
        handler.halt(kube_ctx, add_database(terminationPolicy="Halt", halted=True))

        assert load_database().status.phase == Phase.HALTED

    def test_policy_is_checked_before_validation(self, handler, kube_ctx, cluster, add_database, event_reasons):
        """Test that an invalid spec under another policy still reports a policy violation."""
        db = add_database(replicas=2, halted=True, terminationPolicy="Delete")

        with pytest.raises(PolicyViolationError):
            handler.halt(kube_ctx, db)

        assert cluster.writes == []
        assert "PolicyViolation" in event_reasons()

    def test_unknown_policy_refuses_halt(self, handler, kube_ctx, cluster, add_database):
        """Test that an unrecognised policy cannot be halted."""
        db = add_database(halted=True, terminationPolicy="DoNotTerminate")

        with pytest.raises(PolicyViolationError, match="DoNotTerminate"):
            handler.halt(kube_ctx, db)

        assert cluster.writes == []

    def test_halt_timeout_before_first_provision_keeps_phase_unset(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that a failed first halt does not advance the phase."""
        db = add_database(terminationPolicy="Halt", halted=True)
        cluster.add(
            "stateful_set",
            {"metadata": {"name": "demo"}, "spec": {"replicas": 1}, "status": {"replicas": 1}},
        )
        cluster.scale_immediately = False
        kube_ctx.settings = OperatorConfig(halt_poll_interval_seconds=0.0, halt_timeout_seconds=0.0)

        with pytest.raises(HaltTimeoutError):
            handler.halt(kube_ctx, db)

        assert load_database().status.phase == Phase.UNSET
        assert not any(call[0] == "replace_status" for call in cluster.calls)

    def test_resume_after_halt(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that clearing the halted flag brings the database back to Ready."""
        handler.create(kube_ctx, add_database(terminationPolicy="Halt"))
        _halt_spec(cluster)
        handler.halt(kube_ctx, load_database())

        obj = cluster.get(PLURAL_PERCONA_XTRADB, "demo")
        obj["spec"]["halted"] = False
        obj["metadata"]["generation"] += 1
        handler.create(kube_ctx, load_database())

        assert cluster.get("stateful_set", "demo")["spec"]["replicas"] == 1
        db = load_database()
        assert db.status.phase == Phase.READY
        assert db.status.observed_generation == 3


class TestTerminate:
    """Test cases for the terminate pipeline."""

    def test_wipe_out_deletes_and_marks(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that WipeOut deletes claims and secrets and marks them for collection."""
        handler.create(kube_ctx, add_database(terminationPolicy="WipeOut"))
        db = load_database()
        _add_claim(cluster, db, finalizers=["kubernetes.io/pvc-protection"])

        handler.terminate(kube_ctx, db)

        claim = cluster.get("persistent_volume_claim", "data-demo-0")
        assert claim["metadata"]["deletionTimestamp"]
        assert claim["metadata"]["ownerReferences"] == [owner_reference(db)]
        assert cluster.get("secret", "demo-auth") is None
        assert load_database().status.phase == Phase.TERMINATING

    def test_wipe_out_twice_is_a_noop(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that a repeated WipeOut terminate issues no writes."""
        handler.create(kube_ctx, add_database(terminationPolicy="WipeOut"))
        db = load_database()
        _add_claim(cluster, db, finalizers=["kubernetes.io/pvc-protection"])
        handler.terminate(kube_ctx, db)
        cluster.reset_calls()

        handler.terminate(kube_ctx, load_database())

        assert cluster.writes == []

    def test_delete_keeps_secrets(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that Delete hands claims to the collector and keeps secrets."""
        handler.create(kube_ctx, add_database(terminationPolicy="Delete"))
        db = load_database()
        _add_claim(cluster, db)
        cluster.patch(
            "secret",
            name="demo-auth",
            namespace="default",
            body=[{"op": "add", "path": "/metadata/ownerReferences", "value": [owner_reference(db)]}],
        )

        handler.terminate(kube_ctx, db)

        assert cluster.get("persistent_volume_claim", "data-demo-0")["metadata"]["ownerReferences"] == [
            owner_reference(db)
        ]
        assert cluster.get("secret", "demo-auth")["metadata"]["ownerReferences"] == []
        assert not any(call[0] == "delete" for call in cluster.calls)

    def test_halt_then_terminate_deletes_nothing(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that a halted database keeps all its data on deletion."""
        handler.create(kube_ctx, add_database(terminationPolicy="Halt"))
        _halt_spec(cluster)
        handler.halt(kube_ctx, load_database())
        db = load_database()
        _add_claim(cluster, db, owned=True)
        cluster.reset_calls()

        handler.terminate(kube_ctx, db)

        assert not any(call[0] == "delete" for call in cluster.calls)
        assert cluster.get("persistent_volume_claim", "data-demo-0")["metadata"]["ownerReferences"] == []
        assert cluster.get("secret", "demo-auth") is not None
        assert load_database().status.phase == Phase.TERMINATING

    def test_monitor_cleanup_failure_does_not_block(self, handler, kube_ctx, cluster, add_database, load_database, event_reasons):
        """Test that a failing monitor cleanup is reported and swallowed."""
        handler.create(kube_ctx, add_database(monitor={"agent": "prometheus.io/operator"}))
        cluster.fail("delete", PLURAL_SERVICE_MONITOR)

        handler.terminate(kube_ctx, load_database())

        assert "FailedToDelete" in event_reasons()

    def test_monitor_objects_removed(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that monitoring companions are deleted on terminate."""
        handler.create(kube_ctx, add_database(monitor={"agent": "prometheus.io/operator"}))

        handler.terminate(kube_ctx, load_database())

        assert cluster.get(PLURAL_SERVICE_MONITOR, "demo-stats") is None
        assert cluster.get("service", "demo-stats") is None


class TestDispatch:
    """Test cases for the reconcile dispatcher and kopf entry points."""

    def test_reconcile_skips_deleting_objects(self, handler, kube_ctx, cluster, add_database):
        """Test that nothing is reconciled once deletion started."""
        db = add_database()
        db.deletion_timestamp = "2026-01-01T00:00:00Z"

        handler.reconcile(kube_ctx, db)

        assert cluster.writes == []

    def test_reconcile_routes_halted_to_halt(self, handler, kube_ctx, cluster, add_database, load_database):
        """Test that a halted spec is dispatched to halt."""
        handler.reconcile(kube_ctx, add_database(terminationPolicy="Halt", halted=True))

        assert load_database().status.phase == Phase.HALTED

    def test_reconcile_reports_policy_violation(self, handler, kube_ctx, add_database, event_reasons):
        """Test that failures inside reconcile are counted and re-raised."""
        with pytest.raises(PolicyViolationError):
            handler.reconcile(kube_ctx, add_database(terminationPolicy="WipeOut", halted=True))

        assert "ReconcileFailed" in event_reasons()

    def test_delete_handler_removes_finalizer(self, kube_ctx, cluster, add_database):
        """Test that the delete entry point terminates then drops the finalizer."""
        add_database()
        body = cluster.get(PLURAL_PERCONA_XTRADB, "demo")
        body["metadata"]["finalizers"] = [FINALIZER]
        patch = kopf.Patch()
        memo = kopf.Memo()
        memo.kube = kube_ctx

        handle_perconaxtradb_delete(body=body, meta=body["metadata"], patch=patch, memo=memo)

        assert patch.metadata["finalizers"] is None

    def test_delete_handler_tolerates_foreign_phase(self, kube_ctx, cluster, add_database):
        """Test that an object carrying a phase this operator never writes can still be deleted."""
        add_database()
        body = cluster.get(PLURAL_PERCONA_XTRADB, "demo")
        body["status"] = {"phase": "NotReady"}
        body["metadata"]["finalizers"] = [FINALIZER]
        patch = kopf.Patch()
        memo = kopf.Memo()
        memo.kube = kube_ctx

        handle_perconaxtradb_delete(body=body, meta=body["metadata"], patch=patch, memo=memo)

        assert patch.metadata["finalizers"] is None
        assert cluster.get(PLURAL_PERCONA_XTRADB, "demo")["status"]["phase"] == "Terminating"

    def test_resync_skips_object_being_reconciled(self, handler, kube_ctx, cluster, add_database):
        """Test that a resync does not run next to another pipeline on the same object."""
        db = add_database()
        lock = handler.object_lock(db)
        lock.acquire()
        try:
            handler.reconcile(kube_ctx, db, wait=False)
        finally:
            lock.release()

        assert cluster.writes == []

    def test_lock_released_after_failure(self, handler, kube_ctx, add_database):
        """Test that a failing pipeline does not leave the object locked."""
        db = add_database(terminationPolicy="WipeOut", halted=True)

        with pytest.raises(PolicyViolationError):
            handler.reconcile(kube_ctx, db)

        assert handler.object_lock(db).acquire(blocking=False)

    def test_locks_are_per_object(self, handler, add_database):
        first = add_database("first")
        second = add_database("second")

        assert handler.object_lock(first) is handler.object_lock(first)
        assert handler.object_lock(first) is not handler.object_lock(second)

    def test_forget_drops_lock(self, handler, add_database):
        db = add_database()
        lock = handler.object_lock(db)

        handler.forget(db)

        assert handler.object_lock(db) is not lock
