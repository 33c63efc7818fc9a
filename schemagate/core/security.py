from jose import JWTError, jwt
from schemagate.config import settings
from schemagate.core.exceptions import UnauthorizedException, ForbiddenException

# Claims that may carry the tenant identifier, in lookup order
TENANT_CLAIMS = ("tenant_id", "company_id")


def decode_jwt(token: str) -> dict:
    """
    Decode and validate JWT token using shared SECRET_KEY.

    Args:
        token: JWT access token from Authorization header

    Returns:
        Decoded token payload with 'sub', 'exp' and optional tenant/role claims

    Raises:
        UnauthorizedException: If token invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    except JWTError as e:
        raise UnauthorizedException(f"Invalid token: {str(e)}")

    if payload.get("exp") is None:
        raise UnauthorizedException("Token missing expiration")

    if payload.get("sub") is None:
        raise UnauthorizedException("Token missing subject")

    return payload


def extract_tenant_claim(token: str) -> str | None:
    """Return the tenant identifier carried by a bearer token, if any"""
    payload = decode_jwt(token)
    for claim in TENANT_CLAIMS:
        value = payload.get(claim)
        if value is not None and str(value).strip():
            return str(value)
    return None


def require_admin_claims(token: str) -> dict:
    """
    Validate a token for the administrative API.

    Raises:
        UnauthorizedException: If the token is invalid
        ForbiddenException: If the token lacks role=admin
    """
    payload = decode_jwt(token)
    if payload.get("role") != "admin":
        raise ForbiddenException("Administrator role required")
    return payload
