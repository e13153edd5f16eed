from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import date, datetime
from typing import Literal, Optional


class FindMatchesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Any string is accepted; an id that is not a UUID simply does not resolve.
    item_id: str = Field(alias="itemId")


class ScoredCandidate(BaseModel):
    item_id: str
    score: float
    reason: str = ""


class FindMatchesResponse(BaseModel):
    matches: list[ScoredCandidate] = []


class ItemSummary(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: str
    category: str
    location: str
    item_date: date
    status: str
    image_urls: Optional[list[str]] = None

    model_config = {"from_attributes": True}


class MatchResponse(BaseModel):
    id: UUID
    lost_item_id: UUID
    found_item_id: UUID
    match_score: float
    match_reason: Optional[str] = None
    status: str
    created_at: datetime
    lost_item: Optional[ItemSummary] = None
    found_item: Optional[ItemSummary] = None

    model_config = {"from_attributes": True}


class MatchStatusUpdate(BaseModel):
    status: Literal["confirmed", "dismissed"]


class ErrorResponse(BaseModel):
    error: str
