"""
Print job queue.
Serializes print requests from any number of threads into one FIFO stream
handled by a single worker, with a cooldown after failed jobs.
"""

import enum
import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from .bluetooth import BluetoothAdapter
from .clock import Clock
from .exceptions import JobTimeoutError, QueueClosedError, is_link_failure
from .raster import Raster

logger = logging.getLogger(__name__)


class JobStatus(enum.Enum):
    QUEUED = 'queued'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass
class PrintJob:
    """A queued print request. Owned by the queue until it finishes."""

    raster: Raster
    address: str
    submitted_at: float
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    error: Optional[BaseException] = None
    finished_at: Optional[float] = None
    done: threading.Event = field(default_factory=threading.Event, repr=False)


@dataclass
class JobResult:
    """Terminal outcome reported to the caller that submitted a job."""

    job_id: str
    status: JobStatus
    submitted_at: float
    finished_at: Optional[float]
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    def to_dict(self) -> dict:
        result = {
            'job_id': self.job_id,
            'status': self.status.value,
            'submitted_at': self.submitted_at,
            'finished_at': self.finished_at,
        }
        if self.error is not None:
            result['error'] = str(self.error)
            result['error_type'] = type(self.error).__name__
        return result


class PrintJobQueue:
    """FIFO print queue with a single worker thread."""

    def __init__(self, runner: Callable[[PrintJob], None], clock: Optional[Clock] = None,
                 adapter: Optional[BluetoothAdapter] = None, failure_cooldown: float = 3.0,
                 link_failure_cooldown: float = 15.0):
        """
        Initialize print queue.

        Args:
            runner: Called with each job on the worker thread; raises on failure
            clock: Time source for cooldowns
            adapter: Bluetooth adapter reset after link failures
            failure_cooldown: Pause after an ordinary failed job
            link_failure_cooldown: Pause after a job lost the device
        """
        self.runner = runner
        self.clock = clock or Clock()
        self.adapter = adapter
        self.failure_cooldown = failure_cooldown
        self.link_failure_cooldown = link_failure_cooldown

        self._queue = queue.Queue()
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._closed = False
        self.current_job: Optional[PrintJob] = None

    @classmethod
    def from_config(cls, runner: Callable[[PrintJob], None], config: dict,
                    adapter: Optional[BluetoothAdapter] = None,
                    clock: Optional[Clock] = None) -> 'PrintJobQueue':
        return cls(
            runner,
            clock=clock,
            adapter=adapter,
            failure_cooldown=config.get('failure_cooldown', 3.0),
            link_failure_cooldown=config.get('link_failure_cooldown', 15.0),
        )

    def start(self):
        with self._lock:
            if self._closed:
                raise QueueClosedError("Print queue has been stopped")
            if self._worker and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._work, name='print-queue', daemon=True)
            self._worker.start()
        logger.info("[Queue] Print queue worker started")

    def submit(self, raster: Raster, address: str, timeout: Optional[float] = None) -> JobResult:
        """
        Queue a raster and wait for its outcome.

        Args:
            raster: Raster to print
            address: Target printer address
            timeout: Seconds to wait for the job, None to wait indefinitely

        Returns:
            JobResult of this job only, always in a terminal status

        Raises:
            QueueClosedError: If the queue has been stopped
            JobTimeoutError: If the job did not finish within timeout. The job
                stays queued and still runs.
        """
        job = self.enqueue(raster, address)
        if not job.done.wait(timeout):
            raise JobTimeoutError(
                f"Job {job.job_id} did not finish within {timeout}s",
                context={'job_id': job.job_id, 'status': job.status.value}
            )
        return self._result(job)

    def enqueue(self, raster: Raster, address: str) -> PrintJob:
        """Queue a raster without waiting. The returned job's ``done`` event is set when it finishes."""
        self.start()
        job = PrintJob(raster=raster, address=address, submitted_at=self.clock.time())
        with self._lock:
            if self._closed:
                raise QueueClosedError("Print queue has been stopped", context={'job_id': job.job_id})
            self._queue.put(job)
        logger.info(f"[Queue] Job {job.job_id} queued for {address} ({self._queue.qsize()} waiting)")
        return job

    def pending(self) -> int:
        return self._queue.qsize()

    def _result(self, job: PrintJob) -> JobResult:
        return JobResult(
            job_id=job.job_id,
            status=job.status,
            submitted_at=job.submitted_at,
            finished_at=job.finished_at,
            error=job.error,
        )

    def _work(self):
        while True:
            job = self._queue.get()
            if job is None:
                break

            if self._closed:
                self._finish(job, QueueClosedError("Print queue stopped before job ran",
                                                   context={'job_id': job.job_id}))
                continue

            error = self._run(job)
            if error is not None:
                self._cooldown(error)

        logger.info("[Queue] Print queue worker stopped")

    def _run(self, job: PrintJob) -> Optional[BaseException]:
        job.status = JobStatus.RUNNING
        self.current_job = job
        logger.info(f"[Queue] Running job {job.job_id}")

        error = None
        try:
            self.runner(job)
        except Exception as e:
            logger.error(f"[Queue] Job {job.job_id} failed: {e}")
            error = e
        finally:
            self.current_job = None
            self._finish(job, error)

        if error is None:
            logger.info(f"[Queue] Job {job.job_id} succeeded")
        return error

    def _finish(self, job: PrintJob, error: Optional[BaseException]):
        job.error = error
        job.status = JobStatus.FAILED if error is not None else JobStatus.SUCCEEDED
        job.finished_at = self.clock.time()
        job.done.set()

    def _cooldown(self, error: BaseException):
        if is_link_failure(error):
            logger.warning(f"[Queue] Printer link lost, cooling down for {self.link_failure_cooldown}s")
            if self.adapter is not None:
                self.adapter.reset()
            self.clock.sleep(self.link_failure_cooldown)
        else:
            logger.info(f"[Queue] Cooling down for {self.failure_cooldown}s after failed job")
            self.clock.sleep(self.failure_cooldown)

    def stop(self, timeout: Optional[float] = None):
        """
        Stop the worker after the running job.

        Jobs still waiting are failed with QueueClosedError.
        """
        with self._lock:
            self._closed = True
            self._queue.put(None)
            worker = self._worker
        if worker is not None:
            worker.join(timeout)

        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                break
            if job is not None:
                self._finish(job, QueueClosedError("Print queue stopped before job ran",
                                                   context={'job_id': job.job_id}))
        logger.info("[Queue] Print queue stopped")
