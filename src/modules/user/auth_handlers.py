"""Bearer token authentication handler."""

from fastapi import status
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.constants import JWT_ALGORITHM, JWT_AUDIENCE
from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.core.context import AuthenticatedUserContext
from src.modules.user.management import UserManagementService
from src.utils.settings.auth import AuthSettings
from src.utils.logger import get_logger

logger = get_logger(__name__)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            AuthSettings().SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {e}")
        raise LaunchpadException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Invalid or expired authentication token"},
        )

    if payload.get("role") == "anon":
        raise LaunchpadException(
            MessageCode.INSUFFICIENT_PERMISSIONS,
            status.HTTP_403_FORBIDDEN,
            {"description": "Anonymous access not permitted"},
        )

    if not payload.get("sub") or not payload.get("email"):
        raise LaunchpadException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Token is missing the subject or email claim"},
        )

    return payload


async def handle_jwt_auth(db: AsyncSession, token: str) -> AuthenticatedUserContext:
    payload = decode_access_token(token)

    try:
        user = await UserManagementService(db).handle_jwt_authentication(payload)
    except ValueError:
        raise LaunchpadException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Token subject is not a valid user id"},
        )

    return AuthenticatedUserContext(user=user)
