"""
Web search proxy endpoint.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..manager_singleton import ManagerSingleton
from ..user_config import AppConfig
from .web import WebSearchError, google_search

router = APIRouter(prefix="/api", tags=["Web Search"])


@router.get("/web-search")
async def proxy_web_search(
    query: str = Query(..., min_length=1, description="Search query"),
    config: AppConfig = Depends(ManagerSingleton.get_app_config),
):
    """Pass a search through to the configured search API."""
    try:
        body = await google_search(query, config)
    except WebSearchError as e:
        return JSONResponse({"error": True, "msg": str(e)}, status_code=500)
    return JSONResponse(body, headers={"Cache-Control": "no-cache"})
