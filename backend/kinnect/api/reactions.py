"""Reaction endpoints: toggle and summary per target."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kinnect.api.errors import to_http_error
from kinnect.domain.errors import DomainError
from kinnect.domain.reactions import service
from kinnect.domain.reactions.models import ReactionSummary, ToggleRequest, ToggleResult
from kinnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/reactions", tags=["reactions"])


@router.post("/{target_type}/{target_id}", response_model=ToggleResult)
async def toggle_reaction(
	target_type: str,
	target_id: str,
	payload: ToggleRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ToggleResult:
	try:
		return await service.toggle_reaction(
			auth_user.id,
			target_type,
			target_id,
			payload.reaction_type,
			owner_id=payload.owner_id,
		)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("/{target_type}/{target_id}", response_model=ReactionSummary)
async def reaction_summary(
	target_type: str,
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ReactionSummary:
	try:
		return await service.get_reactions(target_type, target_id, viewer_id=auth_user.id)
	except DomainError as exc:
		raise to_http_error(exc) from None
