"""Read-only wrappers for the personal Huntr API (boards, jobs, activity log)."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from huntr_cli.api.client import HuntrApiClient
from huntr_cli.models import Board, JobsResponse, PersonalAction, PersonalJob, UserProfile


class HuntrPersonalApi:
    """Endpoints available to a signed-in Huntr user."""

    def __init__(self, client: HuntrApiClient):
        self.client = client

    async def profile(self) -> UserProfile:
        return UserProfile.model_validate(await self.client.get("/me"))

    async def boards(self) -> list[Board]:
        data = await self.client.get("/user/boards")
        # Seen as a bare array, {"data": [...]} and an id-keyed object
        if isinstance(data, dict):
            data = data["data"] if isinstance(data.get("data"), list) else list(data.values())
        if not isinstance(data, list):
            return []
        return [Board.model_validate(item) for item in data if isinstance(item, dict)]

    async def board(self, board_id: str) -> Board:
        return Board.model_validate(await self.client.get(f"/boards/{board_id}"))

    async def jobs(self, board_id: str) -> dict[str, PersonalJob]:
        data = await self.client.get(f"/board/{board_id}/jobs")
        return JobsResponse.model_validate(data or {}).jobs

    async def job(self, board_id: str, job_id: str) -> PersonalJob:
        return PersonalJob.model_validate(await self.client.get(f"/board/{board_id}/jobs/{job_id}"))

    async def actions(
        self,
        board_id: str,
        since: Optional[datetime] = None,
        types: Optional[list[str]] = None,
    ) -> list[PersonalAction]:
        """Activity log, newest first, optionally filtered by date and action type."""
        data = await self.client.get(f"/board/{board_id}/actions")
        items = data.values() if isinstance(data, dict) else (data or [])
        actions = [PersonalAction.model_validate(item) for item in items if isinstance(item, dict)]

        if since is not None:
            actions = [a for a in actions if a.timestamp >= since]
        if types:
            actions = [a for a in actions if a.action_type in types]

        return sorted(actions, key=lambda a: a.timestamp, reverse=True)

    async def week_summary(self, board_id: str, days: int = 7) -> list[dict[str, str]]:
        """Recent actions joined with their jobs, one flat row per action."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        actions = await self.actions(board_id, since=since)
        jobs = await self.jobs(board_id)

        rows = []
        for action in actions:
            if action.action_type == "ACTIVITY_CREATED":
                continue
            job = jobs.get(action.data.job_id or "")
            rows.append({
                "date": action.timestamp.strftime("%Y-%m-%dT%H:%M"),
                "actionType": action.action_type,
                "company": action.data.company.name if action.data.company else "",
                "jobTitle": action.data.job.title if action.data.job else "",
                "status": action.data.to_list.name if action.data.to_list else "",
                "url": (job.url or "") if job else "",
                "address": (job.location.address or "") if job and job.location else "",
            })
        return rows
