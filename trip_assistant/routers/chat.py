"""
Chat endpoint with SSE streaming of conversation events
"""
import asyncio
import json
import time
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse
import structlog

from trip_assistant.models.chat import ChatRequest, SessionSnapshot
from trip_assistant.services.session import SessionRegistry

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])


def get_registry(req: Request) -> SessionRegistry:
    return req.app.state.session_registry


@router.post("/chat")
async def chat_endpoint(request: ChatRequest, req: Request) -> EventSourceResponse:
    """
    Run one conversation turn and stream its events
    """
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=422, detail="Query must not be empty")

    registry = get_registry(req)
    session = registry.get_or_create(request.session_id)
    turn_id = session.begin_turn()
    if turn_id is None:
        raise HTTPException(status_code=409, detail="A turn is already in progress for this session")

    start_time = time.time()
    logger.info(
        "Chat request received",
        session_id=session.session_id,
        query_length=len(query)
    )

    async def generate_response() -> AsyncGenerator[str, None]:
        """Generate SSE stream"""
        turn = session.submit(query, turn_id=turn_id)
        try:
            yield create_sse_message({
                "type": "start",
                "session_id": session.session_id,
                "metadata": {"timestamp": start_time}
            })

            async for event in turn:
                yield event.model_dump_json()
        except asyncio.CancelledError:
            logger.warning("Chat stream cancelled", session_id=session.session_id)
            raise
        finally:
            await turn.aclose()
            # The turn may never have started if the client left early
            session.release_turn(turn_id)

        yield create_sse_message({
            "type": "done",
            "session_id": session.session_id,
            "metadata": {"total_time": time.time() - start_time}
        })

        logger.info(
            "Chat request completed",
            session_id=session.session_id,
            total_time=time.time() - start_time
        )

    return EventSourceResponse(
        generate_response(),
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
            "X-Session-ID": session.session_id
        }
    )


@router.get("/chat/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, req: Request) -> SessionSnapshot:
    """Current entries and phase of a session"""
    session = get_registry(req).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.snapshot()


@router.delete("/chat/sessions/{session_id}")
async def delete_session(session_id: str, req: Request) -> Dict:
    """Tear a session down, aborting any running turn"""
    if not get_registry(req).remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}


def create_sse_message(data: Dict) -> str:
    """Create SSE message format"""
    # EventSourceResponse adds the "data: " prefix automatically
    return json.dumps(data, ensure_ascii=False)
