"""
Request context middleware for log tracing.

Propagates an X-Request-ID header and binds the request id (plus the game id
for /api/games/<id>/... paths) into the logging context variables, so every
log line written while handling the request carries them.
"""

import logging
import re
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from logging_config import game_id_var, request_id_var

logger = logging.getLogger(__name__)

GAME_PATH = re.compile(r"^/api/games/(?P<game_id>[^/]+)")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    HTTP middleware for request ID generation and propagation.

    - Extracts X-Request-ID from incoming request headers
    - Generates a new UUID if not present
    - Sets request_id (and game_id when in the path) in context vars
    - Adds X-Request-ID to response headers
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: str(uuid.uuid4()))

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(self.header_name) or self.generator()
        request.state.request_id = request_id

        match = GAME_PATH.match(request.url.path)
        request_token = request_id_var.set(request_id)
        game_token = game_id_var.set(match.group("game_id")) if match else None

        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            if game_token is not None:
                game_id_var.reset(game_token)
            request_id_var.reset(request_token)
