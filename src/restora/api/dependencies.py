"""FastAPI dependencies for request context and shared services.

This module provides reusable FastAPI dependencies for:
- Access to the services built in the application lifespan
- Client identity (fingerprint or IP) for rate limiting
- Session lookup
"""

from fastapi import HTTPException, Request, status

from restora.core.config import Settings
from restora.core.dependencies import Services
from restora.services.pipeline import PipelineController


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_services(request: Request) -> Services:
    """Get the Services container from app state.

    Args:
        request: FastAPI Request object (contains app.state)

    Returns:
        Services built during the application lifespan
    """
    return request.app.state.services


def get_client_ip(request: Request) -> str:
    """Resolve the client address, honoring proxy headers.

    Order: first X-Forwarded-For entry, X-Real-IP, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "127.0.0.1"


def get_session(session_id: str, request: Request) -> PipelineController:
    """Look up a pipeline session by id.

    Raises:
        HTTPException: 404 if the session does not exist or expired
    """
    controller = get_services(request).sessions.get(session_id)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Session {session_id} not found"
        )
    return controller
