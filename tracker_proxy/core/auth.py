import logging

from jose import JWTError, jwt

from .errors import AuthenticationError

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

LOGGER = logging.getLogger("tracker_proxy.auth")


def bearer_token(authorization):
    if not authorization:
        raise AuthenticationError("Missing authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def authenticate(authorization, settings):
    """Resolve the user id from a Supabase-style access token."""
    token = bearer_token(authorization)
    secret = settings.require_jwt_secret()
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except JWTError as exc:
        LOGGER.info("Rejected bearer token: %s", exc)
        raise AuthenticationError("Unauthorized") from exc

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Unauthorized")
    return user_id
