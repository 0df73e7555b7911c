"""
Runtime counters for sdweb

One MetricsManager belongs to each application. The middleware feeds it
request and response figures, the file router feeds it transfers and
server-side errors, and ``/metrics`` reports a snapshot.
"""

import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator


@dataclass
class TransferStats:
    """Totals for one transfer direction"""
    completed: int = 0
    failed: int = 0
    bytes: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "bytes": self.bytes,
        }


class TransferCounter:
    """Bytes moved by a single upload or download"""

    def __init__(self):
        self.bytes_count = 0

    def add_bytes(self, count: int):
        self.bytes_count += count


class MetricsManager:
    """Thread-safe metrics manager"""

    def __init__(self):
        self._lock = threading.Lock()
        self._startup_time = time.time()

        self._active_requests = 0
        self._requests_by_method: Dict[str, int] = {}

        # Only finished responses count towards the average
        self._responses = 0
        self._response_time = 0.0
        self._responses_by_status: Dict[int, int] = {}

        self._errors = 0
        self._uploads = TransferStats()
        self._downloads = TransferStats()

    @contextmanager
    def request_context(self, method: str) -> Iterator[None]:
        """Count a request and keep it active until the block exits"""
        with self._lock:
            self._requests_by_method[method] = self._requests_by_method.get(method, 0) + 1
            self._active_requests += 1

        try:
            yield
        finally:
            with self._lock:
                self._active_requests -= 1

    def record_response(self, status_code: int, response_time: float):
        with self._lock:
            self._responses_by_status[status_code] = self._responses_by_status.get(status_code, 0) + 1
            self._responses += 1
            self._response_time += response_time

    def increment_errors(self):
        with self._lock:
            self._errors += 1

    @contextmanager
    def upload_context(self) -> Iterator[TransferCounter]:
        """Context manager for upload metrics"""
        with self._transfer(self._uploads) as counter:
            yield counter

    @contextmanager
    def download_context(self) -> Iterator[TransferCounter]:
        """Context manager for download metrics"""
        with self._transfer(self._downloads) as counter:
            yield counter

    @contextmanager
    def _transfer(self, stats: TransferStats) -> Iterator[TransferCounter]:
        # Bytes of an interrupted transfer still count; the transfer itself counts as failed
        counter = TransferCounter()
        completed = False
        try:
            yield counter
            completed = True
        finally:
            with self._lock:
                stats.bytes += counter.bytes_count
                if completed:
                    stats.completed += 1
                else:
                    stats.failed += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics snapshot"""
        with self._lock:
            average = self._response_time / self._responses if self._responses else 0.0
            return {
                "uptime_seconds": time.time() - self._startup_time,
                "requests": {
                    "total": sum(self._requests_by_method.values()),
                    "active": self._active_requests,
                    "by_method": dict(self._requests_by_method),
                },
                "responses": {
                    "total": self._responses,
                    "by_status": dict(self._responses_by_status),
                    "avg_response_time": average,
                },
                "transfer": {
                    "uploads": self._uploads.to_dict(),
                    "downloads": self._downloads.to_dict(),
                },
                "errors": {
                    "total": self._errors,
                },
            }
