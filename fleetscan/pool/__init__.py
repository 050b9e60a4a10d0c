"""Worker pool: parallel project scanning across OS processes."""

from fleetscan.pool.coordinator import FallbackPolicy, PoolState, WorkerPool, available_cpus, scan_all

__all__ = ["FallbackPolicy", "PoolState", "WorkerPool", "available_cpus", "scan_all"]
