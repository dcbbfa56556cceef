"""
Session token extraction middleware for FastAPI.

Reads the opaque session token from the session cookie, or from an
``Authorization: Bearer`` header for non-browser clients, and attaches it
to request.state. Resolving the token to a user needs a database session,
so that happens in the get_current_user dependency, not here.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


def parse_bearer(auth_header: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization header.
    
    Returns:
        Token, or None if the header is absent or not a Bearer header
    """
    if not auth_header:
        return None
    try:
        scheme, token = auth_header.split()
    except ValueError:
        return None
    if scheme.lower() != "bearer":
        return None
    return token


class SessionCookieMiddleware(BaseHTTPMiddleware):
    """
    Session token extraction middleware.
    
    Features:
    - Reads the httpOnly session cookie
    - Falls back to Bearer tokens for API clients
    - Sets request.state.session_token (None when absent)
    """
    
    def __init__(self, app, cookie_name: str):
        """
        Initialize session middleware.
        
        Args:
            app: FastAPI application
            cookie_name: Name of the session cookie
        """
        super().__init__(app)
        self.cookie_name = cookie_name
        logger.info(f"Session middleware initialized (cookie={cookie_name})")
    
    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        token = request.cookies.get(self.cookie_name)
        if not token:
            token = parse_bearer(request.headers.get("Authorization"))
        
        request.state.session_token = token
        return await call_next(request)


def get_session_token(request: Request) -> Optional[str]:
    """
    Session token attached by SessionCookieMiddleware.
    
    Dependency for FastAPI endpoints.
    """
    return getattr(request.state, "session_token", None)
