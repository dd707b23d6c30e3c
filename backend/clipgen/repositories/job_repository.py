"""
Job store.

Jobs live in process memory: a restart loses in-flight jobs (their credits
stay deducted). The interface allows swapping in a durable store later.
"""
import copy
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from clipgen.entities import Job


class JobRepository(ABC):
    """Storage interface used by JobOrchestrator."""

    @abstractmethod
    def add(self, job: Job) -> None:
        """Insert a new job."""
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        """Return a snapshot of the job, or None."""
        pass

    @abstractmethod
    def update(self, job_id: str, mutate: Callable[[Job], bool]) -> Optional[Job]:
        """
        Atomically apply a mutation to a stored job.

        Args:
            job_id: Job ID
            mutate: Called with the stored job; returns False to reject the change

        Returns:
            Snapshot after the change, or None if the job is unknown or the
            change was rejected
        """
        pass

    @abstractmethod
    def list_for_account(self, account_id: str) -> List[Job]:
        """All jobs of an account, newest first."""
        pass


class InMemoryJobRepository(JobRepository):
    """Thread-safe dict of jobs keyed by id."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()

    def add(self, job: Job) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job already exists: {job.id}")
            self._jobs[job.id] = copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def update(self, job_id: str, mutate: Callable[[Job], bool]) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            working = copy.deepcopy(job)
            if not mutate(working):
                return None
            self._jobs[job_id] = working
            return copy.deepcopy(working)

    def list_for_account(self, account_id: str) -> List[Job]:
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values() if j.account_id == account_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)
