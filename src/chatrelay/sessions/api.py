"""
Sessions Management API

Endpoints for the session list, the active session and its replies.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from ..manager_singleton import ManagerSingleton
from .service import SessionsService
from .store import ChatStore

router = APIRouter(prefix="/sessions", tags=["Sessions"])


class MessageRequest(BaseModel):
    """Request model for chat messages."""
    content: str = Field(..., description="The message content")
    web_search: bool = Field(False, description="Attach web search results to the message")


class MoveRequest(BaseModel):
    from_index: int = Field(..., ge=0, description="Current position of the session")
    to_index: int = Field(..., ge=0, description="New position of the session")


@router.get("")
async def list_sessions(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """List sessions in display order with the active index."""
    return SessionsService.list_sessions(store)


@router.post("")
async def create_session(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Create a new session and make it active."""
    return SessionsService.create_session(store)


@router.get("/current")
async def get_current_session(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    return SessionsService.get_current_session(store)


@router.post("/current/reset")
async def reset_current_session(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Clear the messages and memory of the active session."""
    return SessionsService.reset_current_session(store)


@router.post("/current/messages")
async def stream_message(
    request_data: MessageRequest,
    request: Request,
    store: ChatStore = Depends(ManagerSingleton.get_chat_store),
):
    """Send a message to the active session and stream the reply."""
    return await SessionsService.stream_message(
        content=request_data.content,
        store=store,
        is_web_search=request_data.web_search,
        request=request,
    )


@router.post("/undo-delete")
async def undo_delete(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Restore the session list from before the last delete."""
    return SessionsService.undo_delete(store)


@router.post("/move")
async def move_session(request_data: MoveRequest, store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    return SessionsService.move_session(request_data.from_index, request_data.to_index, store)


@router.post("/stop-all")
async def stop_all(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Abort every in-flight request."""
    return SessionsService.stop_all(store)


@router.post("/{index}/select")
async def select_session(index: int, store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    return SessionsService.select_session(index, store)


@router.delete("/{index}")
async def delete_session(index: int, store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Delete a session; it can be restored for a few seconds."""
    return SessionsService.delete_session(index, store)


@router.post("/{index}/messages/{message_id}/stop")
async def stop_message(index: int, message_id: int, store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Abort the pending reply with ``message_id``."""
    return SessionsService.stop_message(index, message_id, store)
