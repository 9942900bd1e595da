import secrets

from fastapi import Header, HTTPException, status

from notification_engine.core.config import get_settings


def require_admin_token(x_admin_token: str | None = Header(default=None)) -> str:
    """Operator endpoints share one static token from settings."""
    expected = get_settings().admin_api_token
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return x_admin_token
