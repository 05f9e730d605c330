from shared.auth.dependencies import get_bearer_token, http_bearer

__all__ = ["get_bearer_token", "http_bearer"]
