"""Persistence for connection requests, connections and adjacency.

`PostgresConnectionStore` relies on database constraints for the pair
invariants: a unique index on the canonical pair of `connections` (one row per
pair, ever) and a partial unique index on pending requests keyed on the
unordered pair. `MemoryConnectionStore` mirrors the same constraints behind a
single asyncio.Lock and backs tests and local tools.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Set, Tuple

import asyncpg
import ulid

from kinnect.domain.connections.models import (
	Connection,
	ConnectionRequest,
	Neighbor,
	RequestStatus,
	canonical_pair,
	recency_key,
)
from kinnect.domain.errors import AlreadyConnectedError, DuplicateRequestError, InvalidStateError

Direction = Literal["incoming", "outgoing"]
Cursor = Tuple[datetime, str]


class MemoryConnectionStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._users: Dict[str, bool] = {}
		self._requests: Dict[str, ConnectionRequest] = {}
		self._connections: Dict[str, Connection] = {}
		self._by_pair: Dict[Tuple[str, str], str] = {}
		self._adjacency: Dict[str, Dict[str, Neighbor]] = {}

	async def add_user(self, user_id: str, display_name: Optional[str] = None, *, active: bool = True) -> None:
		async with self._lock:
			self._users[str(user_id)] = active

	async def missing_users(self, user_ids: Iterable[str]) -> Set[str]:
		async with self._lock:
			return {uid for uid in user_ids if not self._users.get(uid)}

	async def get_request(self, request_id: str) -> Optional[ConnectionRequest]:
		async with self._lock:
			request = self._requests.get(request_id)
			return replace(request) if request else None

	async def find_pending_between(self, user_one: str, user_two: str) -> Optional[ConnectionRequest]:
		async with self._lock:
			request = self._pending_between(user_one, user_two)
			return replace(request) if request else None

	async def create_request(
		self,
		sender_id: str,
		receiver_id: str,
		message: Optional[str],
		created_at: datetime,
	) -> ConnectionRequest:
		async with self._lock:
			if self._active_connection(sender_id, receiver_id):
				raise AlreadyConnectedError()
			if self._pending_between(sender_id, receiver_id):
				raise DuplicateRequestError()
			request = ConnectionRequest(
				id=str(ulid.new()),
				sender_id=sender_id,
				receiver_id=receiver_id,
				status=RequestStatus.PENDING,
				created_at=created_at,
				message=message,
			)
			self._requests[request.id] = request
			return replace(request)

	async def transition_request(
		self,
		request_id: str,
		status: RequestStatus,
		responded_at: datetime,
	) -> Optional[ConnectionRequest]:
		async with self._lock:
			request = self._requests.get(request_id)
			if request is None or not request.is_pending:
				return None
			request.status = status
			request.responded_at = responded_at
			return replace(request)

	async def accept_request(self, request_id: str, accepted_at: datetime) -> Tuple[ConnectionRequest, Connection]:
		async with self._lock:
			request = self._requests.get(request_id)
			if request is None or not request.is_pending:
				raise InvalidStateError("request_not_pending")
			pair = canonical_pair(request.sender_id, request.receiver_id)
			existing_id = self._by_pair.get(pair)
			existing = self._connections.get(existing_id) if existing_id else None
			if existing is not None and existing.active:
				raise AlreadyConnectedError()
			if existing is None:
				connection = Connection(
					id=str(ulid.new()),
					user_a=pair[0],
					user_b=pair[1],
					connected_at=accepted_at,
					request_id=request.id,
				)
				self._connections[connection.id] = connection
				self._by_pair[pair] = connection.id
			else:
				connection = existing
				connection.active = True
				connection.connected_at = accepted_at
				connection.request_id = request.id
				connection.deactivated_at = None
			request.status = RequestStatus.ACCEPTED
			request.responded_at = accepted_at
			self._link(connection)
			return replace(request), replace(connection)

	async def get_connection(self, connection_id: str) -> Optional[Connection]:
		async with self._lock:
			connection = self._connections.get(connection_id)
			return replace(connection) if connection else None

	async def find_active_connection(self, user_one: str, user_two: str) -> Optional[Connection]:
		async with self._lock:
			connection = self._active_connection(user_one, user_two)
			return replace(connection) if connection else None

	async def deactivate_connection(self, connection_id: str, deactivated_at: datetime) -> Optional[Connection]:
		async with self._lock:
			connection = self._connections.get(connection_id)
			if connection is None or not connection.active:
				return None
			connection.active = False
			connection.deactivated_at = deactivated_at
			self._adjacency.get(connection.user_a, {}).pop(connection.user_b, None)
			self._adjacency.get(connection.user_b, {}).pop(connection.user_a, None)
			return replace(connection)

	async def neighbors(self, user_id: str) -> List[Neighbor]:
		async with self._lock:
			return sorted(self._adjacency.get(user_id, {}).values(), key=recency_key, reverse=True)

	async def connected_to_any(self, user_id: str, candidates: Sequence[str]) -> bool:
		async with self._lock:
			peers = self._adjacency.get(user_id, {})
			return any(candidate in peers for candidate in candidates)

	async def pending_peers(self, user_id: str) -> Set[str]:
		async with self._lock:
			peers: Set[str] = set()
			for request in self._requests.values():
				if request.is_pending and request.involves(user_id):
					peers.add(request.receiver_id if request.sender_id == user_id else request.sender_id)
			return peers

	async def sample_users(self, exclude: Set[str], limit: int) -> List[str]:
		async with self._lock:
			pool = [uid for uid, active in self._users.items() if active and uid not in exclude]
		if limit <= 0 or not pool:
			return []
		return random.sample(pool, min(limit, len(pool)))

	async def list_connections(self, user_id: str, limit: int, before: Optional[Cursor] = None) -> List[Neighbor]:
		rows = await self.neighbors(user_id)
		if before:
			rows = [n for n in rows if recency_key(n) < before]
		return rows[:limit]

	async def count_connections(self, user_id: str, since: Optional[datetime] = None) -> int:
		rows = await self.neighbors(user_id)
		if since is None:
			return len(rows)
		return sum(1 for n in rows if n.connected_at >= since)

	async def list_pending(
		self,
		user_id: str,
		direction: Direction,
		limit: int,
		before: Optional[Cursor] = None,
	) -> List[ConnectionRequest]:
		async with self._lock:
			rows = [replace(r) for r in self._requests.values() if r.is_pending and self._matches(r, user_id, direction)]
		rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
		if before:
			rows = [r for r in rows if (r.created_at, r.id) < before]
		return rows[:limit]

	async def count_pending(self, user_id: str, direction: Direction) -> int:
		async with self._lock:
			return sum(1 for r in self._requests.values() if r.is_pending and self._matches(r, user_id, direction))

	@staticmethod
	def _matches(request: ConnectionRequest, user_id: str, direction: Direction) -> bool:
		if direction == "incoming":
			return request.receiver_id == user_id
		return request.sender_id == user_id

	def _pending_between(self, user_one: str, user_two: str) -> Optional[ConnectionRequest]:
		pair = {user_one, user_two}
		for request in self._requests.values():
			if request.is_pending and {request.sender_id, request.receiver_id} == pair:
				return request
		return None

	def _active_connection(self, user_one: str, user_two: str) -> Optional[Connection]:
		connection_id = self._by_pair.get(canonical_pair(user_one, user_two))
		connection = self._connections.get(connection_id) if connection_id else None
		if connection is None or not connection.active:
			return None
		return connection

	def _link(self, connection: Connection) -> None:
		self._adjacency.setdefault(connection.user_a, {})[connection.user_b] = Neighbor(
			connection.user_b, connection.id, connection.connected_at
		)
		self._adjacency.setdefault(connection.user_b, {})[connection.user_a] = Neighbor(
			connection.user_a, connection.id, connection.connected_at
		)


_REQUEST_COLUMNS = "id, sender_id, receiver_id, status, message, created_at, responded_at"
_CONNECTION_COLUMNS = "id, user_a, user_b, connected_at, active, request_id, deactivated_at"


class PostgresConnectionStore:
	"""Repository backed by asyncpg."""

	def __init__(self, pool: asyncpg.pool.Pool) -> None:
		self._pool = pool

	async def add_user(self, user_id: str, display_name: Optional[str] = None, *, active: bool = True) -> None:
		async with self._pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO users (id, display_name, active)
				VALUES ($1, $2, $3)
				ON CONFLICT (id) DO UPDATE SET display_name = COALESCE(EXCLUDED.display_name, users.display_name),
					active = EXCLUDED.active
				""",
				user_id,
				display_name,
				active,
			)

	async def missing_users(self, user_ids: Iterable[str]) -> Set[str]:
		wanted = list({str(uid) for uid in user_ids})
		async with self._pool.acquire() as conn:
			rows = await conn.fetch("SELECT id FROM users WHERE id = ANY($1::text[]) AND active", wanted)
		found = {str(row["id"]) for row in rows}
		return set(wanted) - found

	async def get_request(self, request_id: str) -> Optional[ConnectionRequest]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_REQUEST_COLUMNS} FROM connection_requests WHERE id = $1", request_id)
		return ConnectionRequest.from_record(row) if row else None

	async def find_pending_between(self, user_one: str, user_two: str) -> Optional[ConnectionRequest]:
		async with self._pool.acquire() as conn:
			row = await self._pending_between(conn, user_one, user_two)
		return ConnectionRequest.from_record(row) if row else None

	async def create_request(
		self,
		sender_id: str,
		receiver_id: str,
		message: Optional[str],
		created_at: datetime,
	) -> ConnectionRequest:
		user_a, user_b = canonical_pair(sender_id, receiver_id)
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				active = await conn.fetchval(
					"SELECT 1 FROM connections WHERE user_a = $1 AND user_b = $2 AND active",
					user_a,
					user_b,
				)
				if active:
					raise AlreadyConnectedError()
				try:
					row = await conn.fetchrow(
						f"""
						INSERT INTO connection_requests (id, sender_id, receiver_id, status, message, created_at)
						VALUES ($1, $2, $3, 'pending', $4, $5)
						RETURNING {_REQUEST_COLUMNS}
						""",
						str(ulid.new()),
						sender_id,
						receiver_id,
						message,
						created_at,
					)
				except asyncpg.UniqueViolationError:
					raise DuplicateRequestError() from None
		return ConnectionRequest.from_record(row)

	async def transition_request(
		self,
		request_id: str,
		status: RequestStatus,
		responded_at: datetime,
	) -> Optional[ConnectionRequest]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE connection_requests
				SET status = $2, responded_at = $3
				WHERE id = $1 AND status = 'pending'
				RETURNING {_REQUEST_COLUMNS}
				""",
				request_id,
				status.value,
				responded_at,
			)
		return ConnectionRequest.from_record(row) if row else None

	async def accept_request(self, request_id: str, accepted_at: datetime) -> Tuple[ConnectionRequest, Connection]:
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				# Row lock on the request serialises racing accepts; the loser sees a non-pending row.
				request_row = await conn.fetchrow(
					f"""
					UPDATE connection_requests
					SET status = 'accepted', responded_at = $2
					WHERE id = $1 AND status = 'pending'
					RETURNING {_REQUEST_COLUMNS}
					""",
					request_id,
					accepted_at,
				)
				if request_row is None:
					raise InvalidStateError("request_not_pending")
				request = ConnectionRequest.from_record(request_row)
				user_a, user_b = canonical_pair(request.sender_id, request.receiver_id)
				try:
					connection_row = await conn.fetchrow(
						f"""
						INSERT INTO connections (id, user_a, user_b, connected_at, active, request_id)
						VALUES ($1, $2, $3, $4, TRUE, $5)
						ON CONFLICT (user_a, user_b) DO UPDATE
							SET active = TRUE,
								connected_at = EXCLUDED.connected_at,
								request_id = EXCLUDED.request_id,
								deactivated_at = NULL
							WHERE connections.active = FALSE
						RETURNING {_CONNECTION_COLUMNS}
						""",
						str(ulid.new()),
						user_a,
						user_b,
						accepted_at,
						request.id,
					)
				except asyncpg.UniqueViolationError:
					raise AlreadyConnectedError() from None
				if connection_row is None:
					raise AlreadyConnectedError()
				connection = Connection.from_record(connection_row)
				await conn.executemany(
					"""
					INSERT INTO connection_edges (user_id, peer_id, connection_id, connected_at)
					VALUES ($1, $2, $3, $4)
					ON CONFLICT (user_id, peer_id)
					DO UPDATE SET connection_id = EXCLUDED.connection_id, connected_at = EXCLUDED.connected_at
					""",
					[
						(user_a, user_b, connection.id, connection.connected_at),
						(user_b, user_a, connection.id, connection.connected_at),
					],
				)
		return request, connection

	async def get_connection(self, connection_id: str) -> Optional[Connection]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_CONNECTION_COLUMNS} FROM connections WHERE id = $1", connection_id)
		return Connection.from_record(row) if row else None

	async def find_active_connection(self, user_one: str, user_two: str) -> Optional[Connection]:
		user_a, user_b = canonical_pair(user_one, user_two)
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_CONNECTION_COLUMNS} FROM connections WHERE user_a = $1 AND user_b = $2 AND active",
				user_a,
				user_b,
			)
		return Connection.from_record(row) if row else None

	async def deactivate_connection(self, connection_id: str, deactivated_at: datetime) -> Optional[Connection]:
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				row = await conn.fetchrow(
					f"""
					UPDATE connections
					SET active = FALSE, deactivated_at = $2
					WHERE id = $1 AND active
					RETURNING {_CONNECTION_COLUMNS}
					""",
					connection_id,
					deactivated_at,
				)
				if row is None:
					return None
				await conn.execute("DELETE FROM connection_edges WHERE connection_id = $1", connection_id)
		return Connection.from_record(row)

	async def neighbors(self, user_id: str) -> List[Neighbor]:
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT peer_id, connection_id, connected_at
				FROM connection_edges
				WHERE user_id = $1
				ORDER BY connected_at DESC, connection_id DESC
				""",
				user_id,
			)
		return [self._neighbor(row) for row in rows]

	async def connected_to_any(self, user_id: str, candidates: Sequence[str]) -> bool:
		if not candidates:
			return False
		async with self._pool.acquire() as conn:
			found = await conn.fetchval(
				"SELECT 1 FROM connection_edges WHERE user_id = $1 AND peer_id = ANY($2::text[]) LIMIT 1",
				user_id,
				list(candidates),
			)
		return bool(found)

	async def pending_peers(self, user_id: str) -> Set[str]:
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT CASE WHEN sender_id = $1 THEN receiver_id ELSE sender_id END AS peer_id
				FROM connection_requests
				WHERE status = 'pending' AND (sender_id = $1 OR receiver_id = $1)
				""",
				user_id,
			)
		return {str(row["peer_id"]) for row in rows}

	async def sample_users(self, exclude: Set[str], limit: int) -> List[str]:
		if limit <= 0:
			return []
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id FROM users
				WHERE active AND NOT (id = ANY($1::text[]))
				ORDER BY random()
				LIMIT $2
				""",
				list(exclude),
				limit,
			)
		return [str(row["id"]) for row in rows]

	async def list_connections(self, user_id: str, limit: int, before: Optional[Cursor] = None) -> List[Neighbor]:
		params: List[object] = [user_id]
		where_clause = ""
		if before:
			params.extend(before)
			where_clause = " AND (connected_at, connection_id) < ($2, $3)"
		params.append(limit)
		query = (
			"""
			SELECT peer_id, connection_id, connected_at
			FROM connection_edges
			WHERE user_id = $1
			"""
			+ where_clause
			+ f" ORDER BY connected_at DESC, connection_id DESC LIMIT ${len(params)}"
		)
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [self._neighbor(row) for row in rows]

	async def count_connections(self, user_id: str, since: Optional[datetime] = None) -> int:
		async with self._pool.acquire() as conn:
			if since is None:
				count = await conn.fetchval("SELECT COUNT(*) FROM connection_edges WHERE user_id = $1", user_id)
			else:
				count = await conn.fetchval(
					"SELECT COUNT(*) FROM connection_edges WHERE user_id = $1 AND connected_at >= $2",
					user_id,
					since,
				)
		return int(count or 0)

	async def list_pending(
		self,
		user_id: str,
		direction: Direction,
		limit: int,
		before: Optional[Cursor] = None,
	) -> List[ConnectionRequest]:
		column = "receiver_id" if direction == "incoming" else "sender_id"
		params: List[object] = [user_id]
		where_clause = ""
		if before:
			params.extend(before)
			where_clause = " AND (created_at, id) < ($2, $3)"
		params.append(limit)
		query = (
			f"""
			SELECT {_REQUEST_COLUMNS}
			FROM connection_requests
			WHERE {column} = $1 AND status = 'pending'
			"""
			+ where_clause
			+ f" ORDER BY created_at DESC, id DESC LIMIT ${len(params)}"
		)
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [ConnectionRequest.from_record(row) for row in rows]

	async def count_pending(self, user_id: str, direction: Direction) -> int:
		column = "receiver_id" if direction == "incoming" else "sender_id"
		async with self._pool.acquire() as conn:
			count = await conn.fetchval(
				f"SELECT COUNT(*) FROM connection_requests WHERE {column} = $1 AND status = 'pending'",
				user_id,
			)
		return int(count or 0)

	@staticmethod
	async def _pending_between(conn: asyncpg.Connection, user_one: str, user_two: str):
		return await conn.fetchrow(
			f"""
			SELECT {_REQUEST_COLUMNS}
			FROM connection_requests
			WHERE status = 'pending'
			  AND ((sender_id = $1 AND receiver_id = $2) OR (sender_id = $2 AND receiver_id = $1))
			LIMIT 1
			""",
			user_one,
			user_two,
		)

	@staticmethod
	def _neighbor(row) -> Neighbor:
		return Neighbor(
			user_id=str(row["peer_id"]),
			connection_id=str(row["connection_id"]),
			connected_at=row["connected_at"],
		)


ConnectionStore = MemoryConnectionStore | PostgresConnectionStore
