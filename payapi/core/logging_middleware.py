import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("payapi")

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    요청/응답 로깅 + 요청 ID 부여

    클라이언트가 보낸 X-Request-ID 가 있으면 그대로 쓰고, 없으면 새로 만들어
    응답 헤더로 돌려줍니다. 결제 문의 시 로그를 찾는 키로 사용합니다.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        prefix = f"[{request_id}] {request.method} {request.url.path}"

        logger.info(f"{prefix} started")
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{prefix} raised")
            raise

        duration_ms = (time.time() - start) * 1000
        message = f"{prefix} -> {response.status_code} in {duration_ms:.1f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
