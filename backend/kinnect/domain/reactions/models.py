"""Reaction types, targets and result schemas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field

from kinnect.domain.errors import ValidationError


class ReactionType(str, Enum):
	LIKE = "like"
	CELEBRATE = "celebrate"
	SUPPORT = "support"
	FUNNY = "funny"
	LOVE = "love"
	INSIGHTFUL = "insightful"
	CURIOUS = "curious"


class TargetType(str, Enum):
	POST = "post"
	POST_COMMENT = "post_comment"
	COMMENT_REPLY = "comment_reply"


ToggleAction = Literal["added", "removed", "replaced"]


def parse_reaction_type(value: str) -> ReactionType:
	try:
		return ReactionType(str(value).lower())
	except ValueError:
		raise ValidationError("invalid_reaction_type") from None


def parse_target_type(value: str) -> TargetType:
	try:
		return TargetType(str(value).lower())
	except ValueError:
		raise ValidationError("invalid_target_type") from None


@dataclass(slots=True, frozen=True)
class TargetKey:
	target_type: TargetType
	target_id: str


@dataclass(slots=True)
class Reaction:
	user_id: str
	target: TargetKey
	reaction_type: ReactionType
	created_at: datetime
	updated_at: datetime


def empty_counts() -> Dict[str, int]:
	return {kind.value: 0 for kind in ReactionType}


class ToggleRequest(BaseModel):
	reaction_type: str = Field(default=ReactionType.LIKE.value)
	owner_id: Optional[str] = Field(default=None, description="Owner of the target, notified on new reactions")


class ToggleResult(BaseModel):
	action: ToggleAction
	reacted: bool
	reaction_type: Optional[str] = None
	total: int
	counts: Dict[str, int]


class ReactionSummary(BaseModel):
	target_type: str
	target_id: str
	total: int
	counts: Dict[str, int]
	user_reaction: Optional[str] = None
