from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.security import APIKeyHeader

from app.dependencies import get_pipeline
from app.schemas import AskRequest, AskResponse, ClearConversationResponse
from app.settings import Settings, get_settings
from sqlgrep.pipeline import Pipeline

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(
    key: Optional[str] = Security(api_key_header),
    settings: Settings = Depends(get_settings),
):
    """
    Simple API key check using X-API-Key header and configured API keys.

    - Settings.api_keys_raw is a comma-separated list of keys.
    - If api_keys_raw is empty → auth disabled (dev mode).
    """
    allowed = settings.api_keys
    if not allowed:
        # No keys configured → treat as dev mode (auth off).
        return
    if not key or key not in allowed:
        raise HTTPException(status_code=401, detail="invalid API key")


router = APIRouter(prefix="/ask", dependencies=[Depends(require_api_key)])


@router.post(
    "",
    responses={200: {"model": AskResponse}},
    name="ask",
)
async def ask(
    request: AskRequest,
    pipeline: Pipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    debug = request.debug or settings.debug
    answer = await run_in_threadpool(
        pipeline.answer_question,
        request.question,
        debug=debug,
        conversation_id=request.conversation_id,
        context_name=request.context,
    )
    logger.debug(
        "Answered /ask",
        extra={"steps": len(answer.plan.steps), "refused": answer.refused},
    )
    return answer.to_payload(debug=debug)


@router.delete(
    "/conversations/{conversation_id}",
    response_model=ClearConversationResponse,
    name="clear_conversation",
)
async def clear_conversation(
    conversation_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
):
    if pipeline.memory is None:
        return {"cleared": 0}
    cleared = await run_in_threadpool(pipeline.memory.clear, conversation_id)
    return {"cleared": cleared}
