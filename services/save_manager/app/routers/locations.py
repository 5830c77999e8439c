# services/save_manager/app/routers/locations.py
from fastapi import APIRouter, Body, Depends, HTTPException
from core.config import logger as core_logger
from core.errors import SaveManagerError
from core.models import ApiResponse, LocationValue, User
from ..main import UserWorkspace, ensure_loaded, get_current_user, get_workspace, http_error

logger = core_logger.getChild("SaveManager").getChild("LocationRouter")

router = APIRouter()


async def _reconcile(workspace: UserWorkspace, user: User, file_name: str, entries) -> ApiResponse:
    try:
        await workspace.locations.reconcile(user)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data={"file_name": file_name, "locations": entries})


@router.get("/", response_model=ApiResponse)
async def list_locations(user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    return ApiResponse(status="success", data=workspace.locations.locations)


@router.post("/{file_name}", response_model=ApiResponse)
async def add_location(file_name: str, user: User = Depends(get_current_user),
                       workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    entries = workspace.locations.add_location(file_name)
    return await _reconcile(workspace, user, file_name, entries)


@router.put("/{file_name}/{index}", response_model=ApiResponse)
async def set_location(file_name: str, index: int, payload: LocationValue = Body(...),
                       user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    try:
        entries = workspace.locations.set_location(file_name, index, payload.value)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await _reconcile(workspace, user, file_name, entries)


@router.delete("/{file_name}/{index}", response_model=ApiResponse)
async def remove_location(file_name: str, index: int, user: User = Depends(get_current_user),
                          workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    try:
        entries = workspace.locations.remove_location(file_name, index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info(f"[{user.id}/{file_name}] Removed save location #{index}.")
    return await _reconcile(workspace, user, file_name, entries)
