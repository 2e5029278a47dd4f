"""Prometheus metrics for the PerconaXtraDB Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "xtradb_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "xtradb_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

error_total = Counter(
    "xtradb_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

resource_status_total = Counter(
    "xtradb_operator_resource_status_total",
    "Resource status observations",
    ["kind", "status"],
)

# Lifecycle metrics
phase_transitions_total = Counter(
    "xtradb_operator_phase_transitions_total",
    "Total number of phase writes",
    ["from_phase", "to_phase"],
)

restore_gate_total = Counter(
    "xtradb_operator_restore_gate_total",
    "Restore gate evaluations",
    ["stage", "decision"],
)

ownership_operations_total = Counter(
    "xtradb_operator_ownership_operations_total",
    "Ownership marker mutations on dependent objects",
    ["resource", "action", "result"],
)

dependent_operations_total = Counter(
    "xtradb_operator_dependent_operations_total",
    "Ensure calls on dependent objects by outcome",
    ["resource", "verb"],
)

status_conflicts_total = Counter(
    "xtradb_operator_status_conflicts_total",
    "Optimistic concurrency conflicts while writing status",
)

# API call metrics
api_call_total = Counter(
    "xtradb_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "xtradb_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)
