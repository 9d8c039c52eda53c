"""HTTP middleware: request ids, Prometheus timings and one access log line per request."""

from __future__ import annotations

import time

import ulid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from kinnect.obs import logging as obs_logging
from kinnect.obs import metrics
from kinnect.settings import settings

REQUEST_ID_HEADER = "X-Request-Id"

access_log = obs_logging.get_logger("http")


def route_template(request: Request) -> str:
	"""Matched route path such as /connections/{connection_id}, else the raw path."""
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	return path or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not settings.obs_enabled:
			return await call_next(request)

		request_id = request.headers.get(REQUEST_ID_HEADER) or str(ulid.new())
		request.state.request_id = request_id
		token = obs_logging.bind_context(
			request_id=request_id,
			user_id=request.headers.get("X-User-Id"),
			client_ip=request.client.host if request.client else None,
		)
		started = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
		except Exception:
			access_log.exception("http_request_failed", extra={"method": request.method, "path": request.url.path})
			raise
		finally:
			elapsed = time.perf_counter() - started
			template = route_template(request)
			metrics.observe_request(template, request.method, status_code, elapsed)
			access_log.info(
				"http_request",
				extra={
					"method": request.method,
					"status": status_code,
					"latency_ms": round(elapsed * 1000, 3),
					"route": template,
				},
			)
			obs_logging.reset_context(token)

		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app) -> None:
	app.add_middleware(ObservabilityMiddleware)
