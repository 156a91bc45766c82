"""
Sessions Service Layer

Business logic behind the session endpoints, kept apart from the router.
Store errors are turned into HTTP errors here.
"""

import asyncio
import json
from datetime import datetime
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from .models import ChatMessage, ChatSession
from .store import ChatStore

KEEP_ALIVE_INTERVAL_S = 15


def summarize_session(index: int, session: ChatSession) -> dict[str, Any]:
    return {
        "index": index,
        "id": session.id,
        "topic": session.topic,
        "message_count": len(session.messages),
        "last_update": session.last_update,
        "stat": session.stat.model_dump(),
    }


class SessionsService:
    """Service class for session management operations."""

    @staticmethod
    def list_sessions(store: ChatStore) -> dict[str, Any]:
        sessions = [summarize_session(i, session) for i, session in enumerate(store.sessions)]
        return {
            "sessions": sessions,
            "total_count": len(sessions),
            "current_session_index": store.current_session_index,
            "timestamp": datetime.now().isoformat(),
        }

    @staticmethod
    def create_session(store: ChatStore) -> dict[str, Any]:
        try:
            session = store.new_session()
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to create session: {str(e)}")
        return {"session": session.model_dump(mode="json"), "current_session_index": store.current_session_index}

    @staticmethod
    def get_current_session(store: ChatStore) -> dict[str, Any]:
        session = store.current_session()
        return {"session": session.model_dump(mode="json"), "current_session_index": store.current_session_index}

    @staticmethod
    def select_session(index: int, store: ChatStore) -> dict[str, Any]:
        try:
            store.select_session(index)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"current_session_index": store.current_session_index}

    @staticmethod
    def delete_session(index: int, store: ChatStore) -> dict[str, Any]:
        try:
            store.delete_session(index)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to delete session: {str(e)}")
        return {
            "message": f"Session {index} deleted",
            "current_session_index": store.current_session_index,
            "can_undo": store.can_undo_delete(),
        }

    @staticmethod
    def undo_delete(store: ChatStore) -> dict[str, Any]:
        if not store.undo_delete():
            raise HTTPException(status_code=409, detail="Nothing to restore")
        return {"message": "Session restored", "current_session_index": store.current_session_index}

    @staticmethod
    def move_session(from_index: int, to_index: int, store: ChatStore) -> dict[str, Any]:
        try:
            store.move_session(from_index, to_index)
        except IndexError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"current_session_index": store.current_session_index}

    @staticmethod
    def reset_current_session(store: ChatStore) -> dict[str, Any]:
        store.reset_session()
        return {"message": "Session reset", "current_session_index": store.current_session_index}

    @staticmethod
    def stop_message(index: int, message_id: int, store: ChatStore) -> dict[str, Any]:
        stopped = store.stop(index, message_id)
        if not stopped:
            raise HTTPException(status_code=404, detail=f"No pending request for message {message_id}")
        return {"stopped": True, "message_id": message_id}

    @staticmethod
    def stop_all(store: ChatStore) -> dict[str, Any]:
        pending = store.controllers.has_pending()
        store.stop_all()
        return {"stopped": pending}

    @staticmethod
    async def clear_all_data(store: ChatStore) -> dict[str, Any]:
        try:
            await store.clear_all_data()
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to clear data: {str(e)}")
        return {"message": "All data cleared", "timestamp": datetime.now().isoformat()}

    @staticmethod
    async def stream_message(
        content: str,
        store: ChatStore,
        is_web_search: bool = False,
        request: Request | None = None,
    ) -> StreamingResponse:
        """Send a message to the active session and stream reply snapshots using SSE."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        session_index = store.current_session_index

        def listener(message: ChatMessage) -> None:
            queue.put_nowait(message.model_dump(mode="json"))

        try:
            bot_message, handle = await store.on_user_input(content, is_web_search=is_web_search, listener=listener)
        except Exception as e:
            logger.error(f"Failed to start reply: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to process message: {str(e)}")

        if bot_message.streaming:
            listener(bot_message)

        async def sse_generator():
            """Yields SSE frames until the reply stops streaming."""
            try:
                while True:
                    try:
                        snapshot = await asyncio.wait_for(queue.get(), timeout=KEEP_ALIVE_INTERVAL_S)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue

                    if request and await request.is_disconnected():
                        logger.info(f"Client disconnected from reply {bot_message.id}")
                        break

                    payload = {"type": "message", "session_index": session_index, "data": snapshot}
                    yield f"data: {json.dumps(payload)}\n\n"
                    if not snapshot.get("streaming"):
                        break
            finally:
                if handle is not None and not handle.settled:
                    handle.abort()

        headers = {
            "Content-Type": "text/event-stream; charset=utf-8",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(sse_generator(), media_type="text/event-stream", headers=headers)
