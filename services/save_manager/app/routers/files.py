# services/save_manager/app/routers/files.py
import json
from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Response, UploadFile
from core.config import settings, logger as core_logger
from core.errors import SaveManagerError
from core.models import ApiResponse, FileListing, LabelRequest, PendingFile, RenameRequest, User
from pydantic import ValidationError
from typing import Dict, List
from urllib.parse import quote
from ..main import UserWorkspace, ensure_loaded, get_access_token, get_current_user, get_workspace, http_error
from ..quota import compute_used_bytes, rejection_message

logger = core_logger.getChild("SaveManager").getChild("FileRouter")

router = APIRouter()


def _listing(workspace: UserWorkspace, search: str = "") -> FileListing:
    return FileListing(
        files=workspace.files.search(search),
        used_bytes=compute_used_bytes(workspace.files.known_files()),
        limit_bytes=settings.USER_TOTAL_LIMIT,
    )


def _parse_labels(labels: str) -> Dict[str, str]:
    try:
        parsed = json.loads(labels or "{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=422, detail="labels must be a JSON object of file name -> game title")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=422, detail="labels must be a JSON object of file name -> game title")
    return {str(k): str(v) for k, v in parsed.items()}


@router.get("/", response_model=ApiResponse)
async def list_files(search: str = Query(""), refresh: bool = Query(False),
                     user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    if refresh:
        workspace.loaded = False
    await ensure_loaded(workspace, user)
    return ApiResponse(status="success", data=_listing(workspace, search))


@router.post("/upload", response_model=ApiResponse)
async def upload_files(files: List[UploadFile] = File(...), labels: str = Form("{}"),
                       user: User = Depends(get_current_user), access_token: str = Depends(get_access_token),
                       workspace: UserWorkspace = Depends(get_workspace)):
    """Validates the batch against the quota, then uploads accepted files one by one."""
    label_map = _parse_labels(labels)
    await ensure_loaded(workspace, user)

    try:
        pending: List[PendingFile] = []
        for upload in files:
            content = await upload.read()
            pending.append(PendingFile(
                name=upload.filename or "",
                size=len(content),
                content=content,
                content_type=upload.content_type or "application/octet-stream",
            ))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid file: {e.errors()[0]['msg']}")

    try:
        validation = workspace.files.validate(pending)
    except SaveManagerError as e:
        raise http_error(e)
    if validation.quota_exceeded:
        raise HTTPException(status_code=413, detail=rejection_message(validation.rejected[0]))

    outcomes = []
    try:
        async for outcome in workspace.files.upload_batch(user, validation.accepted, label_map, access_token=access_token):
            outcomes.append(outcome)
    except SaveManagerError as e:
        raise http_error(e)

    if any(o.succeeded for o in outcomes):
        try:
            await workspace.locations.load_locations(user, workspace.files.files.keys())
        except SaveManagerError as e:
            logger.warning(f"[{user.id}] Could not reload save locations after upload: {e.message}")

    failures = [rejection_message(r) for r in validation.rejected]
    failures += [f"Upload failed for {o.file_name}: {o.error}" for o in outcomes if not o.succeeded]
    uploaded = [o.file_name for o in outcomes if o.succeeded]
    if failures:
        message = " ".join(failures)
    elif len(uploaded) == 1:
        message = f"Uploaded {uploaded[0]}!"
    else:
        message = f"Uploaded {len(uploaded)} files!"
    return ApiResponse(
        status="error" if failures else "success",
        data={"outcomes": outcomes, "rejected": validation.rejected, "listing": _listing(workspace)},
        message=message,
    )


@router.get("/upload/progress", response_model=ApiResponse)
async def upload_progress(user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    progress = workspace.files.progress
    if progress is None:
        return ApiResponse(status="success", data=None, message="No upload in progress.")
    return ApiResponse(status="success", data={**progress.model_dump(), "percent": round(progress.percent, 1)})


@router.post("/recover-renames", response_model=ApiResponse)
async def recover_renames(user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    try:
        settled = await workspace.files.recover_renames(user)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data=settled, message=f"Settled {len(settled)} interrupted renames.")


@router.post("/{name}/rename", response_model=ApiResponse)
async def rename_file(name: str, payload: RenameRequest = Body(...),
                      user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    try:
        renamed = await workspace.files.rename_file(user, name, payload.new_name)
    except SaveManagerError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Rename failed: {e.message}")
    try:
        await workspace.locations.move(user, name, renamed.name)
    except SaveManagerError as e:
        logger.warning(f"[{user.id}] Could not move save locations to '{renamed.name}': {e.message}")
    return ApiResponse(status="success", data=renamed, message="File renamed.")


@router.patch("/{name}/label", response_model=ApiResponse)
async def update_label(name: str, payload: LabelRequest = Body(...),
                       user: User = Depends(get_current_user), workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    try:
        updated = await workspace.files.update_label(user, name, payload.label)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data=updated, message="Label updated.")


@router.delete("/{name}", response_model=ApiResponse)
async def delete_file(name: str, user: User = Depends(get_current_user),
                      workspace: UserWorkspace = Depends(get_workspace)):
    await ensure_loaded(workspace, user)
    try:
        await workspace.files.delete_file(user, name)
    except SaveManagerError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Delete failed: {e.message}")
    try:
        await workspace.locations.discard(user, name)
    except SaveManagerError as e:
        logger.warning(f"[{user.id}] Could not clear save locations of '{name}': {e.message}")
    return ApiResponse(status="success", message="File deleted.")


@router.get("/{name}/download")
async def download_file(name: str, user: User = Depends(get_current_user),
                        workspace: UserWorkspace = Depends(get_workspace)):
    try:
        download_name, content = await workspace.files.download(user, name)
    except SaveManagerError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Download failed: {e.message}")
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(download_name)}"},
    )


@router.get("/{name}/url", response_model=ApiResponse)
async def download_url(name: str, user: User = Depends(get_current_user),
                       workspace: UserWorkspace = Depends(get_workspace)):
    try:
        url = await workspace.files.download_url(user, name)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data={"url": url, "expires_in": settings.DOWNLOAD_URL_TTL})
