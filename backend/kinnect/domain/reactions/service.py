"""Reaction toggles evaluated against the persisted state at call time."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from kinnect.domain.errors import ValidationError
from kinnect.domain.notifications import dispatcher as notifications
from kinnect.domain.notifications.models import PostReactionPayload
from kinnect.domain.reactions.models import (
	ReactionSummary,
	TargetKey,
	ToggleResult,
	parse_reaction_type,
	parse_target_type,
)
from kinnect.domain.reactions.repo import MemoryReactionStore, PostgresReactionStore, ReactionStore
from kinnect.infra.postgres import pool_or_none
from kinnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_MEMORY_STORE = MemoryReactionStore()


def _target(target_type: str, target_id: str) -> TargetKey:
	target_id = str(target_id or "").strip()
	if not target_id:
		raise ValidationError("invalid_target_id")
	return TargetKey(parse_target_type(target_type), target_id)


class ReactionService:
	def __init__(self, store: ReactionStore | None = None) -> None:
		self._store = store

	async def _repo(self) -> ReactionStore:
		if self._store is None:
			pool = await pool_or_none()
			self._store = PostgresReactionStore(pool) if pool is not None else _MEMORY_STORE
		return self._store

	async def toggle_reaction(
		self,
		user_id: str,
		target_type: str,
		target_id: str,
		reaction_type: str,
		*,
		owner_id: Optional[str] = None,
	) -> ToggleResult:
		"""Add, remove or replace the caller's reaction on a target.

		No reaction adds one; the same type removes it; a different type replaces it
		in place so the target never passes through a state without the caller's
		reaction.
		"""
		target = _target(target_type, target_id)
		kind = parse_reaction_type(reaction_type)
		store = await self._repo()
		action, counts = await store.toggle(user_id, target, kind, datetime.now(timezone.utc))
		obs_metrics.inc_reaction_toggle(action)
		logger.info(
			"reaction toggled",
			extra={"target_type": target.target_type.value, "target_id": target.target_id, "action": action},
		)
		if action == "added" and owner_id and owner_id != user_id:
			notifications.dispatch(
				owner_id,
				user_id,
				PostReactionPayload(
					target_type=target.target_type.value,
					target_id=target.target_id,
					reaction=kind.value,
				),
			)
		reacted = action != "removed"
		return ToggleResult(
			action=action,
			reacted=reacted,
			reaction_type=kind.value if reacted else None,
			total=sum(counts.values()),
			counts=counts,
		)

	async def get_reactions(self, target_type: str, target_id: str, *, viewer_id: Optional[str] = None) -> ReactionSummary:
		target = _target(target_type, target_id)
		store = await self._repo()
		counts = await store.counts(target)
		mine = await store.user_reaction(viewer_id, target) if viewer_id else None
		return ReactionSummary(
			target_type=target.target_type.value,
			target_id=target.target_id,
			total=sum(counts.values()),
			counts=counts,
			user_reaction=mine.value if mine else None,
		)

	async def get_user_reaction(self, user_id: str, target_type: str, target_id: str) -> Optional[str]:
		store = await self._repo()
		mine = await store.user_reaction(user_id, _target(target_type, target_id))
		return mine.value if mine else None


_SERVICE = ReactionService()


def get_service() -> ReactionService:
	return _SERVICE


async def toggle_reaction(
	user_id: str,
	target_type: str,
	target_id: str,
	reaction_type: str,
	*,
	owner_id: Optional[str] = None,
) -> ToggleResult:
	return await _SERVICE.toggle_reaction(user_id, target_type, target_id, reaction_type, owner_id=owner_id)


async def get_reactions(target_type: str, target_id: str, *, viewer_id: Optional[str] = None) -> ReactionSummary:
	return await _SERVICE.get_reactions(target_type, target_id, viewer_id=viewer_id)


async def get_user_reaction(user_id: str, target_type: str, target_id: str) -> Optional[str]:
	return await _SERVICE.get_user_reaction(user_id, target_type, target_id)
