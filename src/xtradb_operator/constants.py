"""Constants for the PerconaXtraDB Operator."""

# API Group
API_GROUP = "kubedb.com"
API_VERSION = "v1alpha2"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_PERCONA_XTRADB = "PerconaXtraDB"
PLURAL_PERCONA_XTRADB = "perconaxtradbs"
RESOURCE_FQN = f"{PLURAL_PERCONA_XTRADB}.{API_GROUP}"

# AppBinding (consumed by backup/restore tooling)
APPCATALOG_GROUP = "appcatalog.appscode.com"
APPCATALOG_VERSION = "v1alpha1"
KIND_APP_BINDING = "AppBinding"
PLURAL_APP_BINDING = "appbindings"

# Prometheus operator
MONITORING_GROUP = "monitoring.coreos.com"
MONITORING_VERSION = "v1"
KIND_SERVICE_MONITOR = "ServiceMonitor"
PLURAL_SERVICE_MONITOR = "servicemonitors"

# Labels
LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_COMPONENT = "app.kubernetes.io/component"
MANAGED_BY = API_GROUP

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "xtradb-operator"

# Database
DATABASE_PORT = 3306
DATABASE_PORT_NAME = "db"
DEFAULT_EXPORTER_PORT = 56790
EXPORTER_PORT_NAME = "metrics"
ROOT_USER = "root"
MIN_CLUSTER_MEMBERS = 3

# Phases
PHASE_PROVISIONING = "Provisioning"
PHASE_READY = "Ready"
PHASE_HALTED = "Halted"
PHASE_TERMINATING = "Terminating"

# Termination Policies
TERMINATION_POLICY_HALT = "Halt"
TERMINATION_POLICY_PAUSE = "Pause"  # deprecated alias of Halt
TERMINATION_POLICY_DELETE = "Delete"
TERMINATION_POLICY_WIPE_OUT = "WipeOut"

# Storage types
STORAGE_TYPE_DURABLE = "Durable"
STORAGE_TYPE_EPHEMERAL = "Ephemeral"

# Monitoring agents
AGENT_PROMETHEUS_OPERATOR = "prometheus.io/operator"
AGENT_PROMETHEUS_BUILTIN = "prometheus.io/builtin"

# Condition Types
COND_DATABASE_PROVISIONED = "DatabaseProvisioned"
COND_DATABASE_DATA_RESTORED = "DatabaseDataRestored"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_INVALID = "Invalid"
EVENT_REASON_SUCCESSFUL = "Successful"
EVENT_REASON_FAILED_TO_CREATE = "FailedToCreate"
EVENT_REASON_FAILED_TO_DELETE = "FailedToDelete"
EVENT_REASON_HALTED = "Halted"
EVENT_REASON_WAITING_FOR_RESTORE = "WaitingForRestore"
EVENT_REASON_POLICY_VIOLATION = "PolicyViolation"
