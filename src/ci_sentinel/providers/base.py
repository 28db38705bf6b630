from __future__ import annotations
from datetime import datetime
from typing import List, Optional, Protocol

from ..models import Job, Run


class RunSource(Protocol):
    """Point-in-time snapshots of a repository's CI state."""

    async def list_runs(self, owner: str, repo: str, since: Optional[datetime] = None) -> List[Run]: ...
    async def list_jobs(self, owner: str, repo: str, run_id: int) -> List[Job]: ...
