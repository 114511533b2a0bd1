from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class EvidenceType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    CODE = "code"
    DESIGN = "design"
    LINK = "link"
    OTHER = "other"


class SkillDescriptor(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    level: SkillLevel = SkillLevel.INTERMEDIATE
    category: Optional[str] = None
    description: Optional[str] = None


class EvidenceIn(BaseModel):
    type: EvidenceType = EvidenceType.LINK
    url: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=160)
    description: str = ""


class EvidenceOut(EvidenceIn):
    submitted_by: str
    submitted_at: datetime


class ChangeRequestOut(BaseModel):
    id: str
    requested_by: str
    requested_at: datetime
    reason: str
    status: str


class TradeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=160)
    description: str = ""
    skills_offered: list[SkillDescriptor] = Field(default_factory=list)
    skills_wanted: list[SkillDescriptor] = Field(default_factory=list)


class TradeOut(BaseModel):
    id: UUID
    title: str
    description: str
    creator_id: str
    participant_id: Optional[str] = None
    status: str
    skills_offered: list[dict[str, Any]] = Field(default_factory=list)
    skills_wanted: list[dict[str, Any]] = Field(default_factory=list)
    completion_requested_by: Optional[str] = None
    completion_notes: Optional[str] = None
    evidence: list[EvidenceOut] = Field(default_factory=list)
    change_requests: list[ChangeRequestOut] = Field(default_factory=list)
    auto_completion_reason: Optional[str] = None
    reminder_stage: int
    created_at: datetime
    updated_at: datetime
    proposal_accepted_at: Optional[datetime] = None
    completion_requested_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProposalCreate(BaseModel):
    message: str = Field(default="", max_length=4000)
    skills_offered: list[SkillDescriptor] = Field(default_factory=list)
    skills_requested: list[SkillDescriptor] = Field(default_factory=list)


class ProposalOut(BaseModel):
    id: UUID
    trade_id: UUID
    proposer_id: str
    status: str
    message: str
    skills_offered: list[dict[str, Any]] = Field(default_factory=list)
    skills_requested: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CompletionRequestIn(BaseModel):
    notes: str = ""
    evidence: list[EvidenceIn] = Field(default_factory=list)


class ChangesRequestIn(BaseModel):
    feedback: str = ""


class CancelRequestIn(BaseModel):
    reason: Optional[str] = None


class TransitionOut(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    trigger: str
    actor_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ResolutionReportOut(BaseModel):
    ran_at: datetime
    scanned: int
    reminded: list[UUID] = Field(default_factory=list)
    auto_completed: list[UUID] = Field(default_factory=list)
    skipped: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)
    reward_failed: list[UUID] = Field(default_factory=list)
    notifications_delivered: int = 0
    notifications_pruned: int = 0

    model_config = {"from_attributes": True}
