"""
Shared-secret bearer authentication.

Every HTTP request is checked before routing: a missing or malformed
Authorization header is 401, a wrong secret is 403. The push channel does the
same check on its handshake and closes with a policy violation instead.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response, WebSocket, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from wabridge.utils import extract_bearer_token, verify_secret

logger = logging.getLogger(__name__)

MISSING_HEADER_DETAIL = "Unauthorized: Missing or invalid Authorization header."
WRONG_SECRET_DETAIL = "Forbidden: Invalid API secret."


def check_authorization(header: Optional[str], secret: str) -> Optional[int]:
    """
    Returns:
        None if the header carries the secret, otherwise the HTTP status
        to answer with (401 or 403)
    """
    token = extract_bearer_token(header)
    if token is None:
        return status.HTTP_401_UNAUTHORIZED
    if not verify_secret(token, secret):
        return status.HTTP_403_FORBIDDEN
    return None


class BearerAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, secret: str):
        super().__init__(app)
        self.secret = secret

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        failure = check_authorization(request.headers.get("authorization"), self.secret)
        if failure == status.HTTP_401_UNAUTHORIZED:
            logger.warning(f"Rejected request without credentials: {request.method} {request.url.path}")
            return JSONResponse(status_code=failure, content={"detail": MISSING_HEADER_DETAIL})
        if failure == status.HTTP_403_FORBIDDEN:
            logger.warning(f"Rejected request with wrong secret: {request.method} {request.url.path}")
            return JSONResponse(status_code=failure, content={"detail": WRONG_SECRET_DETAIL})
        return await call_next(request)


async def authorize_websocket(websocket: WebSocket, secret: str) -> bool:
    """Close the handshake with 1008 unless it carries the secret."""
    failure = check_authorization(websocket.headers.get("authorization"), secret)
    if failure is None:
        return True
    logger.warning(f"Rejected push-channel connection (status {failure})")
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return False
