from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..db import get_session, save_session
from ..models.chat import TurnRequest, TurnResponse
from ..state import State, get_state

router = APIRouter(tags=["chat"])
logger = logging.getLogger("app")


@router.post("/chat/turn", response_model=TurnResponse, response_model_by_alias=True)
async def v1_chat_turn(
    payload: TurnRequest,
    session_id: Optional[str] = Query(None, description="Persist the resulting task list into this session"),
    state: State = Depends(get_state),
) -> TurnResponse:
    # sqlite calls block, keep them off the event loop
    if session_id and await asyncio.to_thread(get_session, session_id) is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    response = await state.dispatcher().handle_turn(payload)

    if session_id:
        await asyncio.to_thread(
            save_session,
            session_id,
            response.tasks,
            title=response.session_title,
            summary=response.meeting_summary,
        )
        logger.info(f"saved session id={session_id} tasks={len(response.tasks)} route={response.route}")
    return response
