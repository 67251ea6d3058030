"""
Authentication utilities: JWT verification for identity-provider access tokens
"""

import jwt
from config.settings import settings

# JWT configuration
ALGORITHM = "HS256"


def decode_jwt(token: str):
    """Decode a JWT token. Returns None if invalid."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    options = {} if settings.jwt_audience else {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience or None,
            options=options,
        )
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
