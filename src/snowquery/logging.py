import logging
import os
import uuid
from fastapi import Request

logger = logging.getLogger("snowquery")

def setup_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # The warehouse driver is chatty at INFO (one line per statement)
    logging.getLogger("snowflake.connector").setLevel(logging.WARNING)

async def correlation_id_middleware(request: Request, call_next):
    cid = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    request.state.correlation_id = cid
    response = await call_next(request)
    response.headers["x-correlation-id"] = cid
    return response
