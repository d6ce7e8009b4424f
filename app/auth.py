"""API key guard shared by every /sensors route."""

from fastapi import HTTPException, Header

from app.config import settings


def _presented_key(x_api_key: str | None, authorization: str | None) -> str | None:
    if x_api_key is not None:
        return x_api_key
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return None


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Accept the key from X-API-Key or Authorization: Bearer.

    With API_KEY unset the service is open (local single-user setup).
    """
    if settings.api_key is None:
        return ""

    key = _presented_key(x_api_key, authorization)
    if key is None or key != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return key
