from shared.client.errors import (
    AccountLocked,
    AuthClientError,
    EmailNotVerified,
    InvalidCredentials,
    InvalidToken,
    NetworkError,
    ServerError,
    SessionExpired,
    TokenExpired,
    Unauthorized,
    UnknownError,
)
from shared.client.session import (
    AuthEndpoints,
    SessionEvent,
    SessionManager,
    SessionState,
)
from shared.client.storage import (
    FileTokenStore,
    MemoryTokenStore,
    StoredTokens,
    TokenStore,
)

__all__ = [
    "AccountLocked",
    "AuthClientError",
    "AuthEndpoints",
    "EmailNotVerified",
    "FileTokenStore",
    "InvalidCredentials",
    "InvalidToken",
    "MemoryTokenStore",
    "NetworkError",
    "ServerError",
    "SessionEvent",
    "SessionExpired",
    "SessionManager",
    "SessionState",
    "StoredTokens",
    "TokenExpired",
    "TokenStore",
    "Unauthorized",
    "UnknownError",
]
