"""Pydantic models for Huntr API data structures."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class HuntrModel(BaseModel):
    """Base model: Mongo-style ``_id`` aliases, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class BoardList(HuntrModel):
    """A column on a board (Wishlist, Applied, ...)."""
    id: str = Field(default="", alias="_id")
    name: str = ""
    order: Optional[int] = None


class Board(HuntrModel):
    """A job search board."""
    id: str = Field(default="", alias="_id")
    name: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    lists: list[BoardList] = Field(default_factory=list)


class Salary(HuntrModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None


class Location(HuntrModel):
    address: Optional[str] = None
    name: Optional[str] = None
    url: Optional[str] = None


class PersonalJob(HuntrModel):
    """A job as returned by /board/{boardId}/jobs."""
    id: str = Field(default="", alias="_id")
    title: str = ""
    url: Optional[str] = None
    root_domain: Optional[str] = Field(default=None, alias="rootDomain")
    company_id: Optional[str] = Field(default=None, alias="_company")
    list_id: Optional[str] = Field(default=None, alias="_list")
    board_id: Optional[str] = Field(default=None, alias="_board")
    salary: Optional[Salary] = None
    location: Optional[Location] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    last_moved_at: Optional[str] = Field(default=None, alias="lastMovedAt")


class JobsResponse(HuntrModel):
    """Jobs come back keyed by id: {"jobs": {id: job}}."""
    jobs: dict[str, PersonalJob] = Field(default_factory=dict)


class NamedRef(HuntrModel):
    id: str = Field(default="", alias="_id")
    name: str = ""
    title: str = ""


class ActionData(HuntrModel):
    job_id: Optional[str] = Field(default=None, alias="_job")
    company_id: Optional[str] = Field(default=None, alias="_company")
    job: Optional[NamedRef] = None
    company: Optional[NamedRef] = None
    from_list: Optional[NamedRef] = Field(default=None, alias="fromList")
    to_list: Optional[NamedRef] = Field(default=None, alias="toList")
    note: Optional[Any] = None


class PersonalAction(HuntrModel):
    """An entry of the board activity log (/board/{boardId}/actions)."""
    id: str = Field(default="", alias="_id")
    action_type: str = Field(default="", alias="actionType")
    date: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    data: ActionData = Field(default_factory=ActionData)

    @property
    def timestamp(self) -> datetime:
        """When the action happened (falls back to creation time)."""
        raw = self.date or self.created_at
        if not raw:
            return datetime.fromtimestamp(0, tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return datetime.fromtimestamp(0, tz=timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class UserProfile(HuntrModel):
    """The signed-in user (/me)."""
    id: str = Field(default="", alias="_id")
    email: str = ""
    given_name: Optional[str] = Field(default=None, alias="givenName")
    family_name: Optional[str] = Field(default=None, alias="familyName")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.given_name, self.family_name) if part)
