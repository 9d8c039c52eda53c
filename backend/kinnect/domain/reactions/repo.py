"""Reaction persistence. A toggle is one critical section per (user, target)."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Optional, Tuple

import asyncpg

from kinnect.domain.reactions.models import (
	Reaction,
	ReactionType,
	TargetKey,
	ToggleAction,
	empty_counts,
)


class MemoryReactionStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._rows: Dict[Tuple[TargetKey, str], Reaction] = {}

	async def toggle(
		self,
		user_id: str,
		target: TargetKey,
		reaction_type: ReactionType,
		now: datetime,
	) -> Tuple[ToggleAction, Dict[str, int]]:
		key = (target, user_id)
		async with self._lock:
			current = self._rows.get(key)
			if current is None:
				self._rows[key] = Reaction(user_id, target, reaction_type, now, now)
				action: ToggleAction = "added"
			elif current.reaction_type is reaction_type:
				del self._rows[key]
				action = "removed"
			else:
				current.reaction_type = reaction_type
				current.updated_at = now
				action = "replaced"
			return action, self._counts(target)

	async def counts(self, target: TargetKey) -> Dict[str, int]:
		async with self._lock:
			return self._counts(target)

	async def user_reaction(self, user_id: str, target: TargetKey) -> Optional[ReactionType]:
		async with self._lock:
			row = self._rows.get((target, user_id))
			return row.reaction_type if row else None

	def _counts(self, target: TargetKey) -> Dict[str, int]:
		counts = empty_counts()
		for (row_target, _), row in self._rows.items():
			if row_target == target:
				counts[row.reaction_type.value] += 1
		return counts


class PostgresReactionStore:
	def __init__(self, pool: asyncpg.pool.Pool) -> None:
		self._pool = pool

	async def toggle(
		self,
		user_id: str,
		target: TargetKey,
		reaction_type: ReactionType,
		now: datetime,
	) -> Tuple[ToggleAction, Dict[str, int]]:
		params = (user_id, target.target_type.value, target.target_id)
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				current = await conn.fetchval(
					"""
					SELECT reaction_type FROM reactions
					WHERE user_id = $1 AND target_type = $2 AND target_id = $3
					FOR UPDATE
					""",
					*params,
				)
				if current is None:
					# A racing insert for the same key collapses into this row.
					await conn.execute(
						"""
						INSERT INTO reactions (user_id, target_type, target_id, reaction_type, created_at, updated_at)
						VALUES ($1, $2, $3, $4, $5, $5)
						ON CONFLICT (user_id, target_type, target_id)
						DO UPDATE SET reaction_type = EXCLUDED.reaction_type, updated_at = EXCLUDED.updated_at
						""",
						*params,
						reaction_type.value,
						now,
					)
					action: ToggleAction = "added"
				elif current == reaction_type.value:
					await conn.execute(
						"DELETE FROM reactions WHERE user_id = $1 AND target_type = $2 AND target_id = $3",
						*params,
					)
					action = "removed"
				else:
					await conn.execute(
						"""
						UPDATE reactions SET reaction_type = $4, updated_at = $5
						WHERE user_id = $1 AND target_type = $2 AND target_id = $3
						""",
						*params,
						reaction_type.value,
						now,
					)
					action = "replaced"
				counts = await self._counts(conn, target)
		return action, counts

	async def counts(self, target: TargetKey) -> Dict[str, int]:
		async with self._pool.acquire() as conn:
			return await self._counts(conn, target)

	async def user_reaction(self, user_id: str, target: TargetKey) -> Optional[ReactionType]:
		async with self._pool.acquire() as conn:
			value = await conn.fetchval(
				"SELECT reaction_type FROM reactions WHERE user_id = $1 AND target_type = $2 AND target_id = $3",
				user_id,
				target.target_type.value,
				target.target_id,
			)
		return ReactionType(value) if value else None

	@staticmethod
	async def _counts(conn: asyncpg.Connection, target: TargetKey) -> Dict[str, int]:
		rows = await conn.fetch(
			"""
			SELECT reaction_type, COUNT(*) AS n
			FROM reactions
			WHERE target_type = $1 AND target_id = $2
			GROUP BY reaction_type
			""",
			target.target_type.value,
			target.target_id,
		)
		counts = empty_counts()
		for row in rows:
			counts[str(row["reaction_type"])] = int(row["n"])
		return counts


ReactionStore = MemoryReactionStore | PostgresReactionStore
