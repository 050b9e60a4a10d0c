"""Custom exceptions for fleetscan."""


class FleetScanError(Exception):
    """Base exception for all fleetscan errors."""


class WorkerPoolError(FleetScanError):
    """Base exception for worker pool failures."""


class PoolUnavailableError(WorkerPoolError):
    """Raised when worker processes cannot be spawned on this platform."""


class BatchTimeoutError(WorkerPoolError):
    """Raised when a scan batch does not finish within the batch timeout."""

    def __init__(self, timeout: float, completed: int, total: int):
        self.timeout = timeout
        self.completed = completed
        self.total = total
        super().__init__(
            f"Worker pool timed out after {timeout:g}s ({completed}/{total} projects scanned)"
        )


class ProtocolError(WorkerPoolError):
    """Raised when a worker sends a message that fails schema validation."""


class ScanFailedError(FleetScanError):
    """Raised when the in-process fallback scan of a failed job also fails."""

    def __init__(self, dir: str, reason: str):
        self.dir = dir
        self.reason = reason
        super().__init__(f"Failed to scan {dir}: {reason}")


class SnapshotWriteError(FleetScanError):
    """Raised when the cross-reference snapshot cannot be written."""


class PackageManagerError(FleetScanError):
    """Raised when the external package-manager binary fails."""

    def __init__(self, command: list[str], returncode: int, message: str):
        self.command = command
        self.returncode = returncode
        super().__init__(f"{' '.join(command)} exited {returncode}: {message}")
