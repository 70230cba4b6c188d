import hmac
import logging
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from bedrock_bridge.config import settings
from bedrock_bridge.errors import AuthenticationError

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/health"})
BEARER_SCHEME = "bearer"


def extract_bearer_token(header: Optional[str], token_prefix: str) -> str:
    """
    Pull the token out of an ``Authorization`` header value.

    Raises:
        AuthenticationError: If the header is missing, uses another scheme
            or the token lacks ``token_prefix``
    """
    if not header:
        raise AuthenticationError("Missing authorization header")

    scheme, _, token = header.partition(" ")
    if scheme.lower() != BEARER_SCHEME or not token.strip():
        raise AuthenticationError("Invalid authorization format. Expected: Bearer <token>")

    token = token.strip()
    if not token.startswith(token_prefix):
        raise AuthenticationError(f"Invalid token format. Expected format: {token_prefix}xxx")
    return token


def lookup_user(token: str, valid_tokens: Dict[str, str]) -> Optional[str]:
    """Find the user owning ``token``, comparing every candidate in constant time."""
    owner = None
    for candidate, username in valid_tokens.items():
        if hmac.compare_digest(candidate.encode(), token.encode()):
            owner = username
    return owner


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests without a known bearer token.

    ``/`` and ``/health`` stay public. Rejections use the OpenAI error
    envelope so SDK clients raise ``AuthenticationError`` on their side.
    """

    def __init__(self, app, valid_tokens: Dict[str, str], token_prefix: str = settings.api_token_prefix):
        super().__init__(app)
        self.valid_tokens = dict(valid_tokens)
        self.token_prefix = token_prefix
        logger.info(f"Bearer token authentication enabled for {len(self.valid_tokens)} user(s)")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            token = extract_bearer_token(request.headers.get("Authorization"), self.token_prefix)
            username = lookup_user(token, self.valid_tokens)
            if username is None:
                raise AuthenticationError("Invalid authentication token")
        except AuthenticationError as e:
            logger.warning(f"Rejected request to {path}: {e.message}")
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_response().model_dump(),
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.username = username
        logger.debug(f"Authenticated {username} for {path}")
        return await call_next(request)


def parse_api_keys(api_keys_string: str, token_prefix: str = settings.api_token_prefix) -> Dict[str, str]:
    """
    Read the ``API_KEYS`` setting into a token -> username map.

    The setting holds ``username:token`` entries separated by ``;``.
    Malformed entries and tokens without ``token_prefix`` are skipped with
    a warning.

        >>> parse_api_keys("alice:brg_abc123;bob:brg_def456")
        {'brg_abc123': 'alice', 'brg_def456': 'bob'}
    """
    tokens: Dict[str, str] = {}
    entries = [entry.strip() for entry in (api_keys_string or "").split(";")]

    for entry in filter(None, entries):
        username, sep, token = (part.strip() for part in entry.partition(":"))
        if not sep or not username or not token:
            logger.warning(f"Skipping malformed API key entry: {entry}")
        elif not token.startswith(token_prefix):
            logger.warning(f"Skipping token for {username}: missing {token_prefix} prefix")
        else:
            tokens[token] = username

    if not tokens:
        logger.warning("No API keys configured")
    return tokens
