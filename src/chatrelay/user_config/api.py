from typing import Any

from fastapi import APIRouter, HTTPException
from loguru import logger
from pydantic import ValidationError

router = APIRouter()


def get_manager_singleton():
    from ..manager_singleton import ManagerSingleton
    return ManagerSingleton


@router.get("/")
async def get_config() -> dict[str, Any]:
    ManagerSingleton = get_manager_singleton()
    config = await ManagerSingleton.get_app_config()

    return {
        "success": True,
        "config": config.public_dump(),
        "config_id": config.config_id,
        "updated_at": config.updated_at,
    }


@router.put("/")
async def update_config(update_data: dict[str, Any]):
    ManagerSingleton = get_manager_singleton()

    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided")

    try:
        updated_config = await ManagerSingleton.update_app_config(**update_data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid configuration: {e}")
    except Exception as e:
        logger.error(f"Failed to update configuration: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to update configuration: {str(e)}")

    return {
        "success": True,
        "message": "Configuration updated successfully",
        "config": updated_config.public_dump(),
        "config_id": updated_config.config_id,
        "updated_at": updated_config.updated_at,
    }
