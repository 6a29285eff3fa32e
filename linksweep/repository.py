"""
Jobs Repository.

Responsibilities:
- CRUD operations for job records, job log lines and pinned mappings.
- One key-value record per job, per log line, per pinned mapping.

Non-Responsibilities:
- No status transitions or batch logic.
"""

from datetime import datetime
from typing import Dict, List

from .errors import JobNotFoundError
from .models import Job
from .storage import KeyValueStore

JOB_PREFIX = "job:"
LOG_PREFIX = "job_log:"
MAPPING_PREFIX = "job_mapping:"


class JobRepository:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def save(self, job: Job) -> None:
        self.kv.set(f"{JOB_PREFIX}{job.id}", job.to_dict())

    def exists(self, job_id: str) -> bool:
        return self.kv.get(f"{JOB_PREFIX}{job_id}") is not None

    def get(self, job_id: str, with_logs: bool = False) -> Job:
        data = self.kv.get(f"{JOB_PREFIX}{job_id}")
        if data is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        job = Job.from_dict(data)
        if with_logs:
            job.logs = self.get_logs(job_id)
        return job

    def list_jobs(self) -> List[Job]:
        return [Job.from_dict(value) for _, value in self.kv.list_prefix(JOB_PREFIX)]

    def append_log(self, job_id: str, message: str) -> None:
        seq = len(self.kv.list_prefix(f"{LOG_PREFIX}{job_id}:")) + 1
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.kv.set(f"{LOG_PREFIX}{job_id}:{seq:06d}", f"[{stamp}] {message}")

    def get_logs(self, job_id: str) -> List[str]:
        return [value for _, value in self.kv.list_prefix(f"{LOG_PREFIX}{job_id}:")]

    def save_mapping(self, job_id: str, mapping: Dict[str, str]) -> None:
        self.kv.set(f"{MAPPING_PREFIX}{job_id}", [[src, dst] for src, dst in mapping.items()])

    def get_mapping(self, job_id: str) -> Dict[str, str]:
        pairs = self.kv.get(f"{MAPPING_PREFIX}{job_id}", [])
        return {src: dst for src, dst in pairs}
