"""Lead schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

LeadStatus = Literal["assigned", "in-progress", "certified", "on-hold", "closed", "other"]
LeadType = Literal["foster", "volunteer", "other"]

T = TypeVar("T")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Lead(_CamelModel):
    id: str
    name: str = ""
    subject_name: str | None = None
    subject_email: str | None = None
    lead_owner_name: str | None = None
    assigned_organization_id: str | None = None
    assigned_organization_name: str | None = None
    status: LeadStatus = "other"
    type: LeadType = "other"
    lead_score: float | None = None
    engagement_interest: str | None = None
    # Internal initiative id, "" when the record's tenant GUID is unknown
    initiative_id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LeadFilters(_CamelModel):
    search: str | None = None
    case_sensitive: bool = False

    @field_validator("search")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


class PageOptions(_CamelModel):
    limit: int | None = None
    offset: int = Field(default=0, ge=0)
    page_token: str | None = None
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "desc"

    @property
    def start(self) -> int:
        """Row offset to fetch from. A valid ``page_token`` wins over ``offset``."""
        # str.isdigit() alone accepts digits int() rejects, such as "²"
        if self.page_token and self.page_token.isascii() and self.page_token.isdigit():
            return int(self.page_token)
        return self.offset


class PagedResult(_CamelModel, Generic[T]):
    items: list[T] = Field(default_factory=list)
    total_count: int = 0
    next_page_token: str | None = None

    @classmethod
    def empty(cls) -> "PagedResult[T]":
        return cls(items=[], total_count=0)
