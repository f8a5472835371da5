"""Entry points: Lambda handler for bus events, or the HTTP API under uvicorn."""

import asyncio
import logging
from typing import Any

from core.config import Settings
from core.logging_config import set_correlation_id, setup_json_logging
from core.services import build_services

logger = logging.getLogger(__name__)

_settings = Settings.from_env()
setup_json_logging(_settings.log_level)
_services = build_services(_settings)

# One loop for the life of the execution environment; warm invocations reuse
# the breakers, the identity cache and the store's engine bound to it.
_loop = asyncio.new_event_loop()
_store_ready = False


async def _process(event: dict, correlation_id: str) -> dict[str, Any]:
    global _store_ready
    if not _store_ready:
        await _services.event_store.init()
        _store_ready = True
    record = await _services.router.process(event, correlation_id, propagate_errors=False)
    if record is None:
        return {"processed": False}
    return {"processed": True, "eventId": record.event_id, "status": record.status.value}


def handler(event: dict, context: Any) -> dict[str, Any]:
    """Route one bus event. Never raises: a raise would make the bus redeliver."""
    correlation_id = set_correlation_id(getattr(context, "aws_request_id", None))
    try:
        return _loop.run_until_complete(_process(event, correlation_id))
    except Exception:
        logger.exception("Event handler failed", extra={"source": (event or {}).get("source")})
        return {"processed": False}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000)
