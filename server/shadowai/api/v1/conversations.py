import asyncio
import json
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from shadowai.api.deps import get_gateway, get_orchestrator
from shadowai.core.auth import AuthContext, get_auth_context
from shadowai.core.changefeed import Transcript
from shadowai.db.gateway import PersistenceGateway, to_row
from shadowai.schemas.chat import ConversationOut, MessageOut
from shadowai.services.orchestrator import ConversationOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


@router.get("/conversations", response_model=List[ConversationOut])
async def get_conversations(
    limit: int = Query(10, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Recent conversations of the caller (most recently updated first)."""
    return await orchestrator.list_conversations(auth, limit=limit)


@router.post("/conversations", response_model=ConversationOut, status_code=201)
async def create_conversation(
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Start a new chat."""
    return await orchestrator.start_conversation(auth)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    """Delete a conversation and its messages."""
    await orchestrator.delete_conversation(auth, conversation_id)
    return {"status": "deleted", "id": str(conversation_id)}


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(
    conversation_id: int,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Messages of a conversation, oldest first."""
    return await orchestrator.history(auth, conversation_id)


def _sse(payload: Dict) -> str:
    return "data: " + json.dumps(payload) + "\n\n"


@router.get("/conversations/{conversation_id}/events")
async def conversation_events(
    conversation_id: int,
    http_request: Request,
    auth: AuthContext = Depends(get_auth_context),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Live transcript: current messages, then each newly inserted one."""
    # Subscribe before the snapshot so no insert falls between the two
    subscription = gateway.feed.subscribe("messages", conversation_id=conversation_id)
    try:
        snapshot = await gateway.list_messages(auth.user_id, conversation_id)
    except Exception:
        subscription.close()
        raise

    async def generator():
        transcript = Transcript()
        try:
            for row in transcript.extend([to_row(m) for m in snapshot]):
                yield _sse({"message": row})
            yield _sse({"ready": True})
            while True:
                if await http_request.is_disconnected():
                    break
                row = await subscription.get(timeout=KEEPALIVE_SECONDS)
                if row is None:
                    yield ": keepalive\n\n"
                    continue
                if transcript.apply(row):
                    yield _sse({"message": row})
        except asyncio.CancelledError:
            logger.debug("Event stream cancelled conversation=%s", conversation_id)
            raise
        finally:
            subscription.close()

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
