from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

http_bearer = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> str | None:
    """Return the raw bearer credential, or None when the header is absent or malformed."""
    if not credentials or not credentials.credentials:
        return None
    return credentials.credentials
