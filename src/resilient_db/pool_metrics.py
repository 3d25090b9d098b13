"""
Metrics and monitoring for the connection pool.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass
class PoolMetrics:
    """
    Tracks connection pool metrics.

    Updated only from the event loop thread, between suspension points, so no
    lock is needed.
    """

    total_connections_created: int = 0
    total_acquisitions: int = 0
    total_releases: int = 0
    total_discarded: int = 0
    total_timeouts: int = 0
    total_errors: int = 0
    acquisition_times: List[float] = field(default_factory=list)

    def record_acquisition(self, wait_time: float) -> None:
        """
        Record a successful connection acquisition.

        Args:
            wait_time: Time in seconds waited for connection
        """
        self.total_acquisitions += 1
        self.acquisition_times.append(wait_time)

        # Keep only last 1000 acquisition times to prevent memory growth
        if len(self.acquisition_times) > 1000:
            self.acquisition_times = self.acquisition_times[-1000:]

    def record_timeout(self) -> None:
        self.total_timeouts += 1

    def record_error(self) -> None:
        self.total_errors += 1

    def record_connection_created(self) -> None:
        self.total_connections_created += 1

    def record_release(self) -> None:
        self.total_releases += 1

    def record_discard(self) -> None:
        self.total_discarded += 1

    def get_average_wait_time(self) -> float:
        """
        Calculate average connection wait time.

        Returns:
            Average wait time in seconds, or 0.0 if no acquisitions
        """
        if not self.acquisition_times:
            return 0.0
        return sum(self.acquisition_times) / len(self.acquisition_times)


@dataclass
class PoolStats:
    """Current pool statistics snapshot."""

    active_connections: int
    idle_connections: int
    total_connections: int
    connection_limit: int
    waiting_requests: int
    total_created: int
    total_timeouts: int
    average_wait_time: float
    total_acquisitions: int = 0
    total_releases: int = 0
    total_discarded: int = 0
    total_errors: int = 0
