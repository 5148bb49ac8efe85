"""
Middleware components for the Big Two game server.

Provides:
- RequestIDMiddleware: Request tracing with X-Request-ID and game context
"""

from .request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
]
