import time
import uuid

import structlog
from fastapi import Request

from src.api.core.constants import REQUEST_ID_HEADER
from src.utils.logger import get_client_ip, get_logger
from src.utils.path_helpers import path_has_prefix

logger = get_logger(__name__)

QUIET_PATH_PREFIXES = ("/health",)


async def logging_middleware(request: Request, call_next):
    if path_has_prefix(request.url.path, QUIET_PATH_PREFIXES):
        return await call_next(request)

    start_time = time.perf_counter()

    structlog.contextvars.clear_contextvars()
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        ip_address=get_client_ip(request),
        method=request.method,
        path=request.url.path,
    )

    response = await call_next(request)

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "request",
        status_code=response.status_code,
        duration=int((time.perf_counter() - start_time) * 1000),
    )

    return response
