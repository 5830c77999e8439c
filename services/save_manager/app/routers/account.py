# services/save_manager/app/routers/account.py
from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile
from core.auth import AuthClient
from core.config import logger as core_logger
from core.errors import SaveManagerError
from core.models import ApiResponse, DeleteAccountRequest, PendingFile, User
from typing import Optional
from ..account import AccountService
from ..main import get_account, get_auth, get_current_user, http_error

logger = core_logger.getChild("SaveManager").getChild("AccountRouter")

router = APIRouter()


@router.patch("/profile", response_model=ApiResponse)
async def update_profile(display_name: Optional[str] = Form(None), avatar: Optional[UploadFile] = File(None),
                         user: User = Depends(get_current_user), account: AccountService = Depends(get_account)):
    avatar_file = None
    if avatar is not None:
        content = await avatar.read()
        avatar_file = PendingFile(
            name=avatar.filename or "avatar.jpg",
            size=len(content),
            content=content,
            content_type=avatar.content_type or "application/octet-stream",
        )
    if display_name is None and avatar_file is None:
        raise HTTPException(status_code=422, detail="Nothing to update.")
    try:
        updated = await account.update_profile(user, display_name=display_name, avatar=avatar_file)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data=updated, message="Profile updated!")


@router.post("/delete", response_model=ApiResponse)
async def delete_account(payload: DeleteAccountRequest = Body(...), user: User = Depends(get_current_user),
                         account: AccountService = Depends(get_account), auth: AuthClient = Depends(get_auth)):
    try:
        await account.delete_account(user, payload.confirmation)
    except SaveManagerError as e:
        raise http_error(e)
    try:
        await auth.sign_out()
    except SaveManagerError as e:
        # The identity is gone; the local session is cleared either way
        logger.info(f"[{user.id}] Sign out after account deletion reported: {e.message}")
    return ApiResponse(status="success", message="Account and all files deleted successfully.")
