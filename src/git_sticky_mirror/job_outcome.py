"""Job outcome observers.

The cleanup phase asks an observer whether any step of the current job failed
or was cancelled. Anything short of a clear "no failures" keeps the mirror from
being committed.
"""

import os
from typing import Any, Dict, List, Optional, Protocol

import httpx

from git_sticky_mirror.constants import keys
from git_sticky_mirror.types import JobFailureReport
from git_sticky_mirror.utils.logging import get_logger, register_secret

logger = get_logger(__name__)

FAILED_CONCLUSIONS = frozenset({"failure", "cancelled", "timed_out"})

DEFAULT_API_URL = "https://api.github.com"


class JobOutcomeObserver(Protocol):
    def check_failures(self) -> JobFailureReport: ...


class StaticJobOutcomeObserver:
    """Reports a fixed outcome, e.g. one handed over by the job runner."""

    def __init__(self, failed_steps: Optional[List[str]] = None, error: Optional[str] = None) -> None:
        self._failed_steps = list(failed_steps or [])
        self._error = error

    def check_failures(self) -> JobFailureReport:
        return JobFailureReport(
            has_failures=bool(self._failed_steps),
            failed_count=len(self._failed_steps),
            failed_steps=list(self._failed_steps),
            error=self._error,
        )


class GitHubJobOutcomeObserver:
    """Looks up the running job through the GitHub Actions REST API.

    The job is the in-progress one in this run attempt whose runner matches
    RUNNER_NAME. Steps concluded failure, cancelled or timed_out count as failed.
    """

    def __init__(
        self,
        token: str,
        repository: Optional[str] = None,
        run_id: Optional[str] = None,
        run_attempt: Optional[str] = None,
        runner_name: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token = token
        self.repository = repository if repository is not None else os.environ.get(keys.ENV_GITHUB_REPOSITORY, "")
        self.run_id = run_id if run_id is not None else os.environ.get(keys.ENV_GITHUB_RUN_ID, "")
        self.run_attempt = (
            run_attempt if run_attempt is not None else os.environ.get(keys.ENV_GITHUB_RUN_ATTEMPT, "1")
        )
        self.runner_name = runner_name if runner_name is not None else os.environ.get(keys.ENV_RUNNER_NAME, "")
        self.api_url = (api_url or os.environ.get(keys.ENV_GITHUB_API_URL) or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self.transport = transport
        register_secret(token)

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _list_jobs(self) -> List[Dict[str, Any]]:
        path = (
            f"/repos/{self.repository}/actions/runs/{self.run_id}"
            f"/attempts/{self.run_attempt}/jobs"
        )
        jobs: List[Dict[str, Any]] = []
        with httpx.Client(
            base_url=self.api_url,
            headers=self._get_headers(),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            page = 1
            while True:
                resp = client.get(path, params={"per_page": 100, "page": page})
                resp.raise_for_status()
                data = resp.json()
                batch = data.get("jobs", [])
                jobs.extend(batch)
                if not batch or len(jobs) >= data.get("total_count", 0):
                    return jobs
                page += 1

    def _find_current_job(self, jobs: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        candidates = [
            job
            for job in jobs
            if job.get("status") == "in_progress" and job.get("runner_name") == self.runner_name
        ]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def check_failures(self) -> JobFailureReport:
        if not (self.repository and self.run_id and self.runner_name):
            return JobFailureReport.unavailable("job context is incomplete")

        try:
            jobs = self._list_jobs()
        except (httpx.HTTPError, ValueError) as ex:
            logger.debug("job lookup failed: %s", ex)
            return JobFailureReport.unavailable(f"could not list jobs: {ex}")

        job = self._find_current_job(jobs)
        if job is None:
            return JobFailureReport.unavailable(
                f"could not identify the running job on runner {self.runner_name!r}"
            )

        failed_steps = [
            str(step.get("name", "?"))
            for step in job.get("steps", [])
            if step.get("conclusion") in FAILED_CONCLUSIONS
        ]
        return JobFailureReport(
            has_failures=bool(failed_steps),
            failed_count=len(failed_steps),
            failed_steps=failed_steps,
        )
