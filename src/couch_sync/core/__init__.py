"""Core replication engine components for Couch Sync."""

from couch_sync.core.batch import BatchAccumulator
from couch_sync.core.context import RunContext
from couch_sync.core.dispatcher import RunDispatcher, RunResult
from couch_sync.core.engine import ReplicationEngine
from couch_sync.core.pipes import Pipe, PipeStore
from couch_sync.core.provisioner import ProvisionError, ProvisionMode, TargetProvisioner
from couch_sync.core.replicator import TableReplicator
from couch_sync.core.stats import ProgressReporter, RunStats, RunStatus, TableStats

__all__ = [
    "BatchAccumulator",
    "RunContext",
    "RunDispatcher",
    "RunResult",
    "ReplicationEngine",
    "Pipe",
    "PipeStore",
    "ProvisionError",
    "ProvisionMode",
    "TargetProvisioner",
    "TableReplicator",
    "ProgressReporter",
    "RunStats",
    "RunStatus",
    "TableStats",
]
