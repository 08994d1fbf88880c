from fastapi import APIRouter, Depends

from shadowai.api.deps import get_orchestrator
from shadowai.core.auth import AuthContext, get_auth_context
from shadowai.schemas.chat import MessageOut, TurnRequest, TurnResponse
from shadowai.services.orchestrator import ConversationOrchestrator

router = APIRouter()


@router.post("/conversations/{conversation_id}/turns", response_model=TurnResponse)
async def send_turn(
    conversation_id: int,
    request: TurnRequest,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    """Send one user message and return both persisted records.

    The same rows are also delivered on the conversation's event stream; clients
    de-duplicate by message id.
    """
    result = await orchestrator.send_turn(conversation_id, request.message, auth)
    return TurnResponse(
        conversationId=result.conversation_id,
        title=result.title,
        userMessage=MessageOut.model_validate(result.user_message),
        assistantMessage=MessageOut.model_validate(result.assistant_message),
        tier=result.selection.tier,
        model=result.selection.model,
    )
