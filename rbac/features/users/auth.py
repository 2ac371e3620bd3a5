"""
Authentication utilities for bearer JWT verification.
"""
import jwt
from fastapi import HTTPException, status

from rbac.core import config
from rbac.utils import get_logger

log = get_logger(__name__)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a bearer JWT and return its payload.

    The token is expected to carry the principal id in the ``sub`` claim.
    The signature is verified with ``JWT_SECRET``. Without a secret, tokens are
    rejected unless ``JWT_TRUST_UNSIGNED`` is set, in which case the token is
    trusted as issued by an upstream identity provider and only the expiry is
    checked.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload

    Raises:
        HTTPException: If token is invalid or expired, or verification is not configured
    """
    if not config.JWT_SECRET and not config.JWT_TRUST_UNSIGNED:
        log.warning("Rejecting bearer token: JWT_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification is not configured",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        if config.JWT_SECRET:
            return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
