"""Route dependencies: API key authentication and app-state accessors."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from photodetect.config import Settings
    from photodetect.ml.inference import InferencePool
    from photodetect.ml.model_manager import ModelManager
    from photodetect.session import DetectionSession

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_session(request: Request) -> DetectionSession:
    session: DetectionSession = request.app.state.session
    return session


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _matches(candidate: str | None, expected: str) -> bool:
    return candidate is not None and secrets.compare_digest(candidate.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """Check the request's key against the configured API key.

    If no API key is configured (PHOTODETECT_API_KEY not set), all requests
    pass. Otherwise the key must arrive as 'Authorization: Bearer <key>' or
    in the 'X-API-Key' header.
    """
    expected = get_settings(request).api_key
    if expected is None:
        return

    bearer = credentials.credentials if credentials is not None else None
    if _matches(bearer, expected) or _matches(x_api_key, expected):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
