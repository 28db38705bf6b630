from __future__ import annotations
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

import httpx

from ..models import Job, Run, Step
from ..utils import iso_to_dt, iso_to_dt_or_none

log = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
PER_PAGE = 100
CACHE_TTL_SECONDS = 10.0
CACHE_MAX_ENTRIES = 256


class GitHubAPIError(Exception): ...


class GitHubAuthError(GitHubAPIError): ...


class GitHubNotFoundError(GitHubAPIError): ...


class GitHubRateLimitError(GitHubAPIError): ...


class GitHubTimeoutError(GitHubAPIError): ...


class _Cached(NamedTuple):
    fetched_at: float
    etag: Optional[str]
    body: Any


class GitHubClient:
    """
    Read-only GitHub Actions client returning Run/Job snapshots.

    SECURITY: This client ONLY performs GET requests. It cannot modify,
    create, update, or delete any repository data, workflows, or runs.

    Bodies are kept per URL: a repeat request inside CACHE_TTL_SECONDS is
    answered from memory, and older entries are revalidated with
    If-None-Match so a 304 reuses the stored body. At most cache_size URLs
    are remembered; the least recently used one is dropped first.
    """
    def __init__(
        self,
        token: str,
        api_base: str = API_BASE,
        timeout: float = 10.0,
        cache_ttl: float = CACHE_TTL_SECONDS,
        cache_size: int = CACHE_MAX_ENTRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(timeout=timeout, headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "ci-sentinel/0.1",
        }, follow_redirects=True, transport=transport)
        self.api_base = api_base.rstrip("/")
        self.cache_ttl = cache_ttl
        self.cache_size = cache_size
        self._cache: Dict[str, _Cached] = {}  # insertion order == recency

    async def aclose(self):
        await self.client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _remember(self, url: str, entry: _Cached) -> None:
        self._cache.pop(url, None)
        self._cache[url] = entry
        while len(self._cache) > self.cache_size:
            del self._cache[next(iter(self._cache))]

    async def _get_json(self, url: str, params: dict | None = None) -> Any:
        cached = self._cache.get(url)
        if cached and time.monotonic() - cached.fetched_at < self.cache_ttl:
            self._remember(url, cached)
            return cached.body

        headers = {}
        if cached and cached.etag:
            headers["If-None-Match"] = cached.etag
        try:
            r = await self.client.get(url, params=params or {}, headers=headers)
        except httpx.TimeoutException as exc:
            raise GitHubTimeoutError(f"GET {url} timed out") from exc

        if r.status_code == 304 and cached:
            self._remember(url, cached._replace(fetched_at=time.monotonic()))
            return cached.body
        if r.status_code == 401:
            raise GitHubAuthError("Unauthorized. Check that the token is valid and has actions:read scope.")
        if r.status_code == 404:
            raise GitHubNotFoundError(f"GET {url} -> 404. Repository not found or token lacks access.")
        if r.status_code in (403, 429):
            remaining = r.headers.get("X-RateLimit-Remaining")
            raise GitHubRateLimitError(f"GET {url} -> {r.status_code} (rate limit remaining: {remaining or 'n/a'})")
        if r.status_code >= 400:
            raise GitHubAPIError(f"GET {url} -> {r.status_code} {r.text}")

        data = r.json()
        self._remember(url, _Cached(time.monotonic(), r.headers.get("ETag"), data))
        return data

    async def list_runs(self, owner: str, repo: str, since: Optional[datetime] = None) -> List[Run]:
        url = f"{self.api_base}/repos/{owner}/{repo}/actions/runs"
        data = await self._get_json(url, params={"per_page": PER_PAGE})
        runs = [parse_run(d) for d in data.get("workflow_runs", [])]
        if since is not None:
            runs = [r for r in runs if r.updated_at >= since]
        log.debug("%s/%s: %d run(s) since %s", owner, repo, len(runs), since)
        return runs

    async def list_jobs(self, owner: str, repo: str, run_id: int) -> List[Job]:
        url = f"{self.api_base}/repos/{owner}/{repo}/actions/runs/{run_id}/jobs"
        data = await self._get_json(url, params={"per_page": PER_PAGE})
        return [parse_job(j, run_id) for j in data.get("jobs", [])]


def parse_run(d: dict) -> Run:
    updated_at = iso_to_dt(d["updated_at"])
    concluded_at = iso_to_dt_or_none(d.get("run_finished_at"))
    # the runs listing has no finish time; a completed run stops updating when it concludes
    if concluded_at is None and d["status"] == "completed":
        concluded_at = updated_at
    return Run(
        id=d["id"], name=d.get("name") or d.get("display_title") or f"run_{d['id']}", status=d["status"],
        head_branch=d.get("head_branch") or "", head_sha=d.get("head_sha") or "",
        updated_at=updated_at, conclusion=d.get("conclusion"), concluded_at=concluded_at,
    )


def parse_job(d: dict, run_id: int | None = None) -> Job:
    return Job(
        id=d["id"], run_id=d.get("run_id", run_id), name=d["name"], status=d["status"],
        conclusion=d.get("conclusion"), started_at=iso_to_dt_or_none(d.get("started_at")),
        completed_at=iso_to_dt_or_none(d.get("completed_at")),
        steps=tuple(parse_step(s) for s in (d.get("steps") or [])),
    )


def parse_step(d: dict) -> Step:
    return Step(
        name=d["name"], status=d["status"], conclusion=d.get("conclusion"),
        started_at=iso_to_dt_or_none(d.get("started_at")), completed_at=iso_to_dt_or_none(d.get("completed_at")),
    )
