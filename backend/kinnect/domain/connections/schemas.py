"""Pydantic schemas for connection requests and the connection graph."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from kinnect.domain.connections.models import Connection, ConnectionRequest, Neighbor


class ConnectionRequestCreate(BaseModel):
	receiver_id: str = Field(..., min_length=1, description="User the request is addressed to")
	message: Optional[str] = Field(default=None, description="Optional note, at most 300 characters")


class ConnectionRequestSummary(BaseModel):
	id: str
	sender_id: str
	receiver_id: str
	status: Literal["pending", "accepted", "ignored", "withdrawn"]
	message: Optional[str] = None
	created_at: datetime
	responded_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, request: ConnectionRequest) -> "ConnectionRequestSummary":
		return cls(
			id=request.id,
			sender_id=request.sender_id,
			receiver_id=request.receiver_id,
			status=request.status.value,
			message=request.message,
			created_at=request.created_at,
			responded_at=request.responded_at,
		)


class ConnectionSummary(BaseModel):
	id: str
	user_a: str
	user_b: str
	connected_at: datetime
	active: bool

	@classmethod
	def from_model(cls, connection: Connection) -> "ConnectionSummary":
		return cls(
			id=connection.id,
			user_a=connection.user_a,
			user_b=connection.user_b,
			connected_at=connection.connected_at,
			active=connection.active,
		)


class AcceptResponse(BaseModel):
	request: ConnectionRequestSummary
	connection: ConnectionSummary


class ConnectionEntry(BaseModel):
	connection_id: str
	user_id: str
	connected_at: datetime

	@classmethod
	def from_neighbor(cls, neighbor: Neighbor) -> "ConnectionEntry":
		return cls(connection_id=neighbor.connection_id, user_id=neighbor.user_id, connected_at=neighbor.connected_at)


class ConnectionPage(BaseModel):
	items: List[ConnectionEntry]
	total: int
	next: Optional[str] = None


class RequestPage(BaseModel):
	items: List[ConnectionRequestSummary]
	total: int
	next: Optional[str] = None


class DegreeResponse(BaseModel):
	user_id: str
	degree: int = Field(..., ge=0, le=3)


class MutualConnectionsResponse(BaseModel):
	user_id: str
	total: int
	items: List[str]


class Suggestion(BaseModel):
	user_id: str
	degree: int
	mutual_count: int = 0
	mutual_preview: List[str] = Field(default_factory=list)
	source: Literal["second_degree", "discover"]


class SuggestionList(BaseModel):
	items: List[Suggestion]


class ConnectionStatusResponse(BaseModel):
	user_id: str
	status: Literal["own_profile", "connected", "pending_sent", "pending_received", "not_connected"]
	degree: int
	request_id: Optional[str] = None
	connection_id: Optional[str] = None
	connected_at: Optional[datetime] = None


class ConnectionStats(BaseModel):
	total_connections: int
	pending_received: int
	pending_sent: int
	recent_connections: int
	growth_percentage: float
