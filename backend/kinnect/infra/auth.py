"""Authentication helpers for FastAPI endpoints and socket handshakes.

- Bearer JWT verification (HS256) using settings.secret_key.
- Dev headers (X-User-Id) are only respected in development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from kinnect.infra import jwt as jwt_helper
from kinnect.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None
	roles: Tuple[str, ...] = ()
	session_id: Optional[str] = None


class InvalidCredential(Exception):
	"""Raised when a token cannot be turned into an AuthenticatedUser."""


_bearer_scheme = HTTPBearer(auto_error=False)


def resolve_token(token: str) -> AuthenticatedUser:
	"""Decode an access JWT into an AuthenticatedUser.

	Required claims: sub, exp, iat, iss="kinnect-api", aud="kinnect-web".
	Roles may be a list or a comma-separated string.
	"""
	token = (token or "").strip()
	if not token:
		raise InvalidCredential("empty_token")
	try:
		payload = jwt_helper.decode_access(token)
	except Exception as exc:
		raise InvalidCredential("invalid_token") from exc

	roles_claim = payload.get("roles") or payload.get("role")
	roles: Tuple[str, ...]
	if isinstance(roles_claim, (list, tuple)):
		roles = tuple(str(r).strip() for r in roles_claim if str(r).strip())
	elif isinstance(roles_claim, str):
		roles = tuple(part.strip() for part in roles_claim.split(",") if part.strip())
	else:
		roles = ()
	display_name = payload.get("name") or payload.get("display_name")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		display_name=str(display_name) if display_name is not None else None,
		roles=roles,
		session_id=str(session_id) if session_id is not None else None,
	)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		return resolve_token(token)
	except InvalidCredential:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a plain X-User-Id header. In all other environments the
	header is ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip())

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def _scope_header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def authenticate_handshake(environ: dict, auth: Optional[dict]) -> AuthenticatedUser:
	"""Resolve the user behind a Socket.IO handshake or raise InvalidCredential.

	Accepts `auth.token`, then an Authorization bearer header. In development a plain
	`auth.userId` or X-User-Id header is also accepted.
	"""
	scope = environ.get("asgi.scope", environ)
	auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
	token = auth_payload.get("token")
	if not token:
		header = _scope_header(scope, "authorization")
		if header and header.lower().startswith("bearer "):
			token = header.split(" ", 1)[1]
	if token:
		return resolve_token(str(token))
	if settings.is_dev():
		user_id = auth_payload.get("userId") or auth_payload.get("user_id") or _scope_header(scope, "x-user-id")
		if user_id:
			return AuthenticatedUser(id=str(user_id).strip())
	raise InvalidCredential("missing_token")
