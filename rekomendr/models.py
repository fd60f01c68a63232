# models.py
#
# Wire models. Field names follow the browser client's JSON (camelCase).
# Unknown keys are accepted so older clients never trip validation.
#
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, StrictBool
from pydantic.config import ConfigDict


class BetaIn(BaseModel):
    beta1: StrictBool = False
    beta2: StrictBool = False


class QuotaActionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: Optional[str] = None
    chainId: Optional[str] = None
    tier: Optional[str] = None
    beta: Optional[BetaIn] = None


class ChainBeginRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    vertical: Optional[str] = None  # movies|tv|wine|books
    baseQuery: Optional[str] = None
    chainId: Optional[str] = None
    tier: Optional[str] = None
    beta: Optional[BetaIn] = None


class ChainRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    chainId: Optional[str] = None
    tier: Optional[str] = None
    beta: Optional[BetaIn] = None


class RecsRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt: Optional[str] = None
    hints: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    refiners: List[str] = Field(default_factory=list)
    chainId: Optional[str] = None
    tier: Optional[str] = None


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    vote: Optional[str] = None  # "up" | "down"
    itemId: Optional[str] = None
    itemTitle: Optional[str] = None
    itemSummary: Optional[str] = None
    prompt: Optional[str] = None
    userId: Optional[str] = None
    tier: Optional[str] = None


class TrackRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = "unknown"
    details: Dict[str, Any] = Field(default_factory=dict)


class SurveyRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    answers: Optional[Dict[str, Any]] = None
    q1_rating: Optional[int] = None
    q2_choice: Optional[str] = None
    q2_free: Optional[str] = None


class BetaUnlockRequest(BaseModel):
    email: Optional[str] = None


class NudgeRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    vertical: str = "movies"
    history: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    ok: bool
    status: str
    version: str
    model: str
    hasOpenAI: bool
    hasSupabase: bool
    cap: int
