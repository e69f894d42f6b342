"""
NetSentry job managers.
Background batch-scan execution with in-memory state and cancellation.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models import utc_now_iso

logger = logging.getLogger(__name__)

QUEUED = "queued"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"


@dataclass
class ScanJob:
    id: str
    ips: List[str]
    scan_type: str
    status: str = QUEUED
    progress: int = 0
    message: str = ""
    result: Optional[Dict[str, Any]] = None
    error: str = ""
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ips": list(self.ips),
            "scan_type": self.scan_type,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ScanJobManager:
    """Background batch-scan execution manager."""

    def __init__(self, monitor):
        self.monitor = monitor
        self._lock = threading.Lock()
        self._jobs: Dict[str, ScanJob] = {}
        self._threads: Dict[str, threading.Thread] = {}

    def start(self, ips: List[str], scan_type: str = "quick") -> str:
        job_id = str(uuid.uuid4())
        job = ScanJob(id=job_id, ips=list(ips), scan_type=scan_type)
        thread = threading.Thread(target=self._run, args=(job,), daemon=True)
        with self._lock:
            self._jobs[job_id] = job
            self._threads[job_id] = thread
        logger.info("Queued scan job %s for %d devices", job_id, len(job.ips))
        thread.start()
        return job_id

    def _update(self, job: ScanJob, **fields) -> None:
        with self._lock:
            for k, v in fields.items():
                setattr(job, k, v)
            job.updated_at = utc_now_iso()

    def _run(self, job: ScanJob):
        try:
            self._update(job, status=RUNNING, progress=1, message="Initializing scan")

            def progress_cb(p: int, msg: str):
                self._update(job, progress=max(1, min(99, p)), message=msg)

            result = self.monitor.scan_batch(
                job.ips,
                job.scan_type,
                cancel=job.cancel_event,
                progress=progress_cb,
            )
            if result.get("cancelled"):
                self._update(job, status=CANCELLED, progress=100, message="Cancelled", result=result)
            else:
                self._update(job, status=COMPLETED, progress=100, message="Completed", result=result)
            logger.info("Scan job %s finished: %s", job.id, job.status)
        except Exception as exc:
            logger.exception("Scan job %s failed", job.id)
            self._update(job, status=FAILED, progress=100, message="Failed", error=str(exc))
        finally:
            with self._lock:
                self._threads.pop(job.id, None)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict() if job else None

    def list(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            return [j.to_dict() for j in jobs[: max(1, int(limit))]]

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. False for unknown or already finished jobs."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status in (COMPLETED, FAILED, CANCELLED):
                return False
            job.cancel_event.set()
        logger.info("Cancellation requested for scan job %s", job_id)
        return True

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Join the job's worker thread. True when it has finished."""
        with self._lock:
            thread = self._threads.get(job_id)
            job = self._jobs.get(job_id)
        if thread is None:
            # Finished workers drop out of _threads.
            return job is not None and job.status in (COMPLETED, FAILED, CANCELLED)
        thread.join(timeout)
        return not thread.is_alive()
