"""
FastAPI dependencies for the components owned by the application.

The access gate, URL cache, photo pipeline and rate limiter are built once in
`create_app` and live on `app.state`; handlers reach them through these helpers
so tests can build an app around fakes.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .services.access import AccessTokenGate
from .services.photos import PhotoPipeline
from .services.ratelimit import RateLimiter
from .services.url_cache import SignedUrlCache

bearer = HTTPBearer(auto_error=False)


def get_gate(request: Request) -> AccessTokenGate:
    return request.app.state.gate


def get_urls(request: Request) -> SignedUrlCache:
    return request.app.state.urls


def get_pipeline(request: Request) -> PhotoPipeline:
    return request.app.state.pipeline


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


def get_store(request: Request):
    return request.app.state.store


def gallery_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[str]:
    """Bearer token from the Authorization header, if any."""
    return credentials.credentials if credentials else None


def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin"))


def require_admin(request: Request):
    if not is_admin(request):
        raise HTTPException(status_code=403, detail="Not authorized")
