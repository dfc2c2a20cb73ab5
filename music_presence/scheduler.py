# music_presence/scheduler.py
import itertools
import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Union

from .logs import get_logger

Delay = Union[float, Callable[[], float]]


class Job:
    def __init__(self, job_id: int, name: str, callback: Callable[[], None], delay: Delay, repeat: bool, due: float):
        self.id = job_id
        self.name = name
        self.callback = callback
        self.delay = delay
        self.repeat = repeat
        self.due = due
        self.running = False
        self.cancelled = False
        self.runs = 0
        self.dropped = 0

    def next_delay(self) -> float:
        value = self.delay() if callable(self.delay) else self.delay
        return max(0.0, float(value))

    def __repr__(self) -> str:
        return f"<Job {self.name} due={self.due:.2f} repeat={self.repeat}>"


class Scheduler:
    """
    Shared timer for every periodic task in the engine.

    One dispatcher thread decides what is due; callbacks run on a small
    thread pool so a slow tick never holds up the others. A job never
    overlaps itself: if the previous run is still in flight when it comes
    due again, that run is dropped.
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
        max_workers: int = 4,
    ):
        self._own_executor = executor is None
        self._max_workers = max_workers
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="mps-tick"
        )
        self._clock = clock
        self._log = logger or get_logger("scheduler")
        self._jobs: Dict[int, Job] = {}
        self._ids = itertools.count(1)
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._inflight = 0

    # --------------------------------------------------
    # registration
    # --------------------------------------------------

    def every(self, name: str, callback: Callable[[], None], interval: Delay, first_delay: float = 0.0) -> Job:
        return self._add(name, callback, interval, repeat=True, first_delay=first_delay)

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "once") -> Job:
        return self._add(name, callback, delay, repeat=False, first_delay=delay)

    def submit(self, callback: Callable[[], None], name: str = "task") -> Job:
        return self.call_later(0.0, callback, name=name)

    def cancel(self, job: Optional[Job]) -> None:
        if job is None:
            return
        with self._cond:
            job.cancelled = True
            self._jobs.pop(job.id, None)
            self._cond.notify_all()

    def _add(self, name: str, callback, delay: Delay, repeat: bool, first_delay: float) -> Job:
        with self._cond:
            job = Job(next(self._ids), name, callback, delay, repeat, self._clock() + first_delay)
            self._jobs[job.id] = job
            self._cond.notify_all()
        return job

    @property
    def jobs(self):
        with self._cond:
            return list(self._jobs.values())

    # --------------------------------------------------
    # dispatch
    # --------------------------------------------------

    def run_pending(self, now: Optional[float] = None) -> int:
        """Hand every due job to the pool. Returns how many were started."""
        now = self._clock() if now is None else now
        started = []
        with self._cond:
            for job in list(self._jobs.values()):
                if job.cancelled or job.due > now:
                    continue
                if job.running:
                    job.dropped += 1
                    job.due = now + job.next_delay()
                    self._log.debug("Dropped %s, previous run still in flight", job.name)
                    continue
                job.running = True
                self._inflight += 1
                if not job.repeat:
                    self._jobs.pop(job.id, None)
                started.append(job)

        for job in started:
            try:
                self._executor.submit(self._run, job, now)
            except RuntimeError:
                # pool already shut down
                self._finish(job, now)
        return len(started)

    def _run(self, job: Job, started_at: float) -> None:
        try:
            job.callback()
        except Exception:
            self._log.exception("Scheduled job %s failed", job.name)
        finally:
            job.runs += 1
            self._finish(job, started_at)

    def _finish(self, job: Job, started_at: Optional[float] = None) -> None:
        with self._cond:
            job.running = False
            self._inflight -= 1
            if job.repeat and not job.cancelled and started_at is not None:
                # interval may depend on what this run just did
                job.due = started_at + job.next_delay()
            self._cond.notify_all()

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._loop, name="mps-scheduler", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
                pending = [j.due for j in self._jobs.values() if not j.running]
                timeout = None
                if pending:
                    timeout = max(0.0, min(pending) - self._clock())
                if timeout is None or timeout > 0:
                    self._cond.wait(timeout=timeout if timeout is not None else 1.0)
                if not self._running:
                    return
            self.run_pending()

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Cancel every job, then wait for in-flight callbacks to finish."""
        with self._cond:
            self._running = False
            for job in self._jobs.values():
                job.cancelled = True
            self._jobs.clear()
            self._cond.notify_all()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

        if wait:
            with self._cond:
                self._cond.wait_for(lambda: self._inflight <= 0, timeout=timeout)
        if self._own_executor:
            self._executor.shutdown(wait=wait)
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="mps-tick")
