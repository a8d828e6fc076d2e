"""
Webhook receiver for gateway events.

The gateway expects an answer within a few seconds, so the route only
validates the event and acknowledges it; enrichment runs afterwards.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ..errors import ValidationFailure
from ..inbound.pipeline import Accepted, Dropped, InboundPipeline


def create_app(pipeline: InboundPipeline) -> FastAPI:
    app = FastAPI(title="wabridge")

    async def enrich_after_response(accepted: Accepted) -> None:
        # Runs once the response body has gone out
        pipeline.dispatch(accepted)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/webhook/evolution")
    async def evolution_webhook(request: Request, background_tasks: BackgroundTasks) -> Any:
        started = time.monotonic()
        try:
            body = await request.json()
        except ValueError as e:
            logger.warning(f"Webhook invalid JSON: {e}")
            return JSONResponse(
                status_code=400, content={"success": False, "error": "Invalid JSON body"}
            )
        if not isinstance(body, dict):
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Body must be a JSON object"},
            )

        try:
            result = await pipeline.accept(body)
        except ValidationFailure as e:
            logger.warning(f"Rejected webhook from {body.get('instance')}: {e}")
            return JSONResponse(
                status_code=e.status, content={"success": False, "error": str(e)}
            )
        except Exception as e:
            logger.error(f"Error processing webhook: {e}")
            return JSONResponse(
                status_code=500, content={"success": False, "error": str(e)}
            )

        if isinstance(result, Dropped):
            return {"success": True, "message": result.reason}

        background_tasks.add_task(enrich_after_response, result)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"Accepted message for {result.conversation_id} in {elapsed_ms:.0f}ms")
        return {"success": True, "chatId": result.conversation_id, "accepted": True}

    return app
