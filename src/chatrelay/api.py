from fastapi import APIRouter, Depends

from .manager_singleton import ManagerSingleton
from .sessions.api import router as sessions_router
from .sessions.service import SessionsService
from .sessions.store import ChatStore
from .tools.api import router as web_search_router
from .user_config.api import router as config_router

router = APIRouter()
router.include_router(sessions_router)
router.include_router(config_router, prefix="/config")
router.include_router(web_search_router)


@router.get("/health")
async def health_check():
    return {"status": "healthy"}


@router.delete("/data")
async def clear_all_data(store: ChatStore = Depends(ManagerSingleton.get_chat_store)):
    """Abort all requests and wipe every session. Cannot be undone."""
    return await SessionsService.clear_all_data(store)
