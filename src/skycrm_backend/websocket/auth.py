"""
WebSocket authentication module.

The connection gate: every connection attempt must carry a bearer token,
either as the ``token`` query parameter or as an ``Authorization: Bearer``
header. The token is checked by a TokenVerifier before the connection is
admitted. Every failure is reported to the client with the same opaque
message, the actual reason only goes to the server log.
"""

import inspect
import logging
from typing import Any, Awaitable, Optional, Protocol, Union

import jwt
from fastapi import WebSocket
from pydantic import ValidationError

from skycrm_backend.exceptions import AuthenticationError, MissingCredentialError
from skycrm_backend.settings import settings
from skycrm_types.auth import Claims

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    """
    Contract of the external auth collaborator.

    ``verify`` returns the identity claims of a valid token and raises
    (anything) otherwise. It may be a coroutine function when verification
    needs a remote round trip.
    """

    def verify(self, token: str) -> Union[Claims, Awaitable[Claims]]:
        ...


class JWTTokenVerifier:
    """Verifies HMAC/RSA signed JWTs issued by the auth service."""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self.secret = secret or settings.JWT_SECRET
        self.algorithms = [algorithm or settings.JWT_ALGORITHM]
        self.audience = audience if audience is not None else settings.JWT_AUDIENCE

    def verify(self, token: str) -> Claims:
        decoded = jwt.decode(
            token,
            self.secret,
            algorithms=self.algorithms,
            audience=self.audience,
        )
        return Claims.model_validate(decoded)


def extract_bearer_token(websocket: WebSocket, token: Optional[str] = None) -> Optional[str]:
    """
    Extract the bearer credential from the handshake.

    Args:
        websocket: The WebSocket connection (not yet accepted)
        token: Token already taken from the query string, if any

    Returns:
        The raw token or None when the handshake carries none
    """
    if not token:
        token = websocket.query_params.get("token")

    if not token:
        authorization = websocket.headers.get("authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = credentials.strip()

    return token or None


async def authenticate_websocket_token(token: Optional[str], verifier: TokenVerifier) -> Claims:
    """
    Authenticate a connection attempt.

    Args:
        token: Bearer token from the handshake
        verifier: Token verifier to delegate to

    Returns:
        Verified identity claims

    Raises:
        MissingCredentialError: If no token was supplied
        AuthenticationError: If the verifier rejects the token for any reason
    """
    if not token:
        raise MissingCredentialError()

    try:
        result: Any = verifier.verify(token)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, Claims):
            result = Claims.model_validate(result)
    except jwt.ExpiredSignatureError:
        logger.warning("WebSocket auth failed: token expired")
        raise AuthenticationError()
    except jwt.PyJWTError as e:
        logger.warning(f"WebSocket auth failed: invalid token ({type(e).__name__})")
        raise AuthenticationError()
    except ValidationError:
        logger.warning("WebSocket auth failed: token is missing identity claims")
        raise AuthenticationError()
    except AuthenticationError:
        logger.warning("WebSocket auth failed: rejected by verifier")
        raise AuthenticationError()
    except Exception as e:
        logger.error(f"WebSocket authentication error: {e}")
        raise AuthenticationError()

    logger.info(f"WebSocket authentication successful for user {result.user_id} (tenant {result.tenant_id})")
    return result
