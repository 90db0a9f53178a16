# coursestream/worker.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


class JobScheduler:
    """Sole owner of job admission.

    Waits on the orchestrator's wake-up event (or the poll interval), admits
    as many pending jobs as there are free slots and runs each one on the
    executor. A finished job sets the event again instead of admitting its
    successor itself.
    """

    def __init__(self, orchestrator: JobOrchestrator, max_workers: Optional[int] = None,
                 poll_interval: Optional[float] = None):
        settings = orchestrator.settings
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval if poll_interval is not None else settings.scheduler_poll_interval
        self.executor = ThreadPoolExecutor(max_workers=max_workers or settings.max_concurrent_jobs,
                                           thread_name_prefix="coursestream-job")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="coursestream-scheduler", daemon=True)
        self._thread.start()
        logger.info("🚀 Job scheduler started")

    def stop(self, wait: bool = True):
        self._stop.set()
        self.orchestrator.wakeup.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.executor.shutdown(wait=wait)
        logger.info("Job scheduler stopped")

    def run(self):
        wakeup = self.orchestrator.wakeup
        while not self._stop.is_set():
            wakeup.wait(self.poll_interval)
            wakeup.clear()
            if self._stop.is_set():
                break
            try:
                self.tick()
            except Exception:
                logger.exception("❌ Scheduler tick failed")

    def tick(self) -> int:
        """Admit every job that fits, returns how many were started"""
        started = 0
        while True:
            job_id = self.orchestrator.admit_next()
            if job_id is None:
                break
            self.executor.submit(self._run_job, job_id)
            started += 1
        self.orchestrator.purge_expired_jobs()
        return started

    def _run_job(self, job_id: str):
        try:
            self.orchestrator.process_job(job_id)
        except Exception:
            logger.exception("❌ Error processing job %s", job_id)
            self.orchestrator.wakeup.set()

