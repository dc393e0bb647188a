from fastapi import Request, status

from src.api.core.constants import SKIP_AUTH_PATHS
from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.modules.user.auth_handlers import handle_jwt_auth
from src.utils.logger import get_logger
from src.utils.path_helpers import path_matches

logger = get_logger(__name__)


def _extract_bearer_token(authorization: str) -> str:
    auth_parts = authorization.split(" ")
    if len(auth_parts) != 2 or auth_parts[0].lower() != "bearer":
        logger.debug(
            "Invalid authorization header format",
            auth_parts_count=len(auth_parts),
        )
        raise LaunchpadException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Authorization header must be 'Bearer <token>'"},
        )
    return auth_parts[1]


async def auth_middleware(request: Request, call_next):
    """Resolve the Supabase bearer token into ``request.state.user``.

    Failures are rendered here because exceptions raised inside an HTTP
    middleware never reach the registered exception handlers.
    """
    request.state.user = None

    if request.method == "OPTIONS" or path_matches(request.url.path, SKIP_AUTH_PATHS):
        return await call_next(request)

    authorization = request.headers.get("Authorization", "")

    try:
        if not authorization:
            raise LaunchpadException(
                MessageCode.AUTH_REQUIRED,
                status.HTTP_401_UNAUTHORIZED,
                {"description": "Provide an 'Authorization: Bearer <token>' header"},
            )

        token = _extract_bearer_token(authorization)

        async with request.app.state.session_factory() as db:
            auth_context = await handle_jwt_auth(db, token)

        request.state.user = auth_context.user

    except LaunchpadException as e:
        logger.debug(
            "Authentication rejected",
            path=request.url.path,
            message_code=e.message_code,
            status_code=e.status_code,
        )
        return e.to_response()

    return await call_next(request)
