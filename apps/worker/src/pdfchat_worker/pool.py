from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import BoundedSemaphore, Event, Lock
from typing import Any, Callable

from sqlalchemy.engine import Engine

from pdfchat.errors import describe_error
from pdfchat.models import JOB_DONE
from pdfchat.services.queue import ClaimedJob, ack_job, claim_next_job, fail_job

JobRunner = Callable[[ClaimedJob], dict[str, Any]]


@dataclass(frozen=True)
class RetryPolicy:
    base_seconds: float = 5.0
    max_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_seconds, self.base_seconds * 2 ** max(0, attempt - 1))


def _process_claimed_job(
    engine: Engine,
    job: ClaimedJob,
    *,
    runner: JobRunner,
    retry_policy: RetryPolicy,
) -> str | None:
    """Run one claimed job and record its outcome.

    Returns the job's new status, or ``None`` when the lease was lost and the
    outcome could not be recorded.
    """
    attempt = job.attempts + 1
    try:
        result_json = runner(job)
    except Exception as exc:
        error_message = describe_error(exc)
        status = fail_job(
            engine,
            job,
            error_message,
            retryable=bool(getattr(exc, "retryable", False)),
            retry_delay_seconds=retry_policy.delay_for(attempt),
        )
        print(
            f"[worker] job failed job_id={job.id} attempts={attempt}/{job.max_attempts} "
            f"status={status} error={error_message}",
            flush=True,
        )
        return status

    if not ack_job(engine, job, result_json):
        print(f"[worker] lease lost before ack job_id={job.id}", flush=True)
        return None
    print(f"[worker] job done job_id={job.id} result={result_json}", flush=True)
    return JOB_DONE


class WorkerPool:
    """Claims jobs while a slot is free and runs each one on its own thread.

    ``concurrency`` bounds the number of jobs in flight. A slot is held from
    claim until the job's outcome is recorded.
    """

    def __init__(
        self,
        engine: Engine,
        runner: JobRunner,
        *,
        concurrency: int = 100,
        poll_seconds: float = 5.0,
        lease_seconds: float = 300.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._engine = engine
        self._runner = runner
        self._concurrency = concurrency
        self._poll_seconds = poll_seconds
        self._lease_seconds = lease_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._slots = BoundedSemaphore(concurrency)
        self._lock = Lock()
        self._in_flight: dict[str, ClaimedJob] = {}

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def active_jobs(self) -> list[ClaimedJob]:
        with self._lock:
            return list(self._in_flight.values())

    def _run_slot(self, job: ClaimedJob) -> None:
        try:
            _process_claimed_job(
                self._engine,
                job,
                runner=self._runner,
                retry_policy=self._retry_policy,
            )
        except Exception as exc:
            # Outcome not recorded; the job comes back once its lease expires.
            print(f"[worker] could not record outcome job_id={job.id} error={exc!r}", flush=True)
        finally:
            with self._lock:
                self._in_flight.pop(job.id, None)
            self._slots.release()

    def run(self, stop_event: Event, *, exit_when_idle: bool = False) -> int:
        """Process jobs until ``stop_event`` is set.

        With ``exit_when_idle`` the loop also ends once nothing is claimable
        and no job is in flight. In-flight jobs always finish before returning.
        Returns the number of jobs claimed.
        """
        claimed = 0
        with ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="ingest") as executor:
            while not stop_event.is_set():
                if not self._slots.acquire(timeout=self._poll_seconds):
                    continue

                try:
                    job = claim_next_job(self._engine, lease_seconds=self._lease_seconds)
                except Exception as exc:
                    self._slots.release()
                    print(f"[worker] claim failed error={exc!r}; retrying in {self._poll_seconds}s", flush=True)
                    stop_event.wait(self._poll_seconds)
                    continue

                if job is None:
                    self._slots.release()
                    if exit_when_idle and not self.active_jobs():
                        break
                    stop_event.wait(self._poll_seconds)
                    continue

                if job.redelivered:
                    print(f"[worker] re-delivered job_id={job.id} attempts={job.attempts}", flush=True)
                with self._lock:
                    self._in_flight[job.id] = job
                executor.submit(self._run_slot, job)
                claimed += 1

        return claimed
