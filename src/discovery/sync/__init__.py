"""Projection synchronizer keeping the index consistent with the registry."""

from discovery.sync.subscriber import run_partition_worker, start_sync_workers
from discovery.sync.synchronizer import ApplyOutcome, ProjectionSynchronizer, SyncStats

__all__ = [
    "ApplyOutcome",
    "ProjectionSynchronizer",
    "SyncStats",
    "run_partition_worker",
    "start_sync_workers",
]
