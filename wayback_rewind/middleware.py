import uuid
from fastapi import Request


async def request_id_middleware(request: Request, call_next):
    # Reuse a caller-supplied ID so UI logs and server logs line up
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    request.state.request_id = request_id

    response = await call_next(request)

    response.headers['X-Request-ID'] = request_id

    return response
