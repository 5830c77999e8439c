# services/save_manager/app/routers/auth.py
from fastapi import APIRouter, Body, Depends, Query
from core.auth import AuthClient, password_strength
from core.errors import SaveManagerError
from core.config import logger as core_logger
from core.models import ApiResponse, SignInRequest, SignUpRequest, User
from pydantic import BaseModel
from ..main import get_auth, get_current_user, http_error

logger = core_logger.getChild("SaveManager").getChild("AuthRouter")

router = APIRouter()


class PasswordCheck(BaseModel):
    password: str


@router.post("/sign-in", response_model=ApiResponse)
async def sign_in(payload: SignInRequest = Body(...), auth: AuthClient = Depends(get_auth)):
    try:
        user = await auth.sign_in_with_password(payload.email, payload.password)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data=user, message=f"Welcome back, {user.display_name or user.email}!")


@router.post("/sign-up", response_model=ApiResponse)
async def sign_up(payload: SignUpRequest = Body(...), auth: AuthClient = Depends(get_auth)):
    strength = password_strength(payload.password)
    try:
        user = await auth.sign_up(payload.email, payload.password, payload.confirm_password)
    except SaveManagerError as e:
        raise http_error(e)
    if user is None:
        return ApiResponse(status="success", data={"password_strength": strength},
                           message="Check your inbox to confirm your email address.")
    return ApiResponse(status="success", data={"user": user, "password_strength": strength},
                       message="Account created.")


@router.post("/password-strength", response_model=ApiResponse)
async def check_password_strength(payload: PasswordCheck = Body(...)):
    return ApiResponse(status="success", data={"password_strength": password_strength(payload.password)})


@router.get("/oauth/{provider}", response_model=ApiResponse)
async def oauth_url(provider: str, auth: AuthClient = Depends(get_auth)):
    """Returns the provider page to open in a browser to sign in."""
    try:
        url = await auth.sign_in_with_oauth(provider)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data={"url": url}, message=f"Continue signing in with {provider}.")


@router.get("/callback", response_model=ApiResponse)
async def oauth_callback(code: str = Query(...), auth: AuthClient = Depends(get_auth)):
    try:
        user = await auth.exchange_code_for_session(code)
    except SaveManagerError as e:
        raise http_error(e)
    return ApiResponse(status="success", data=user, message="Signed in.")


@router.post("/sign-out", response_model=ApiResponse)
async def sign_out(user: User = Depends(get_current_user), auth: AuthClient = Depends(get_auth)):
    try:
        await auth.sign_out()
    except SaveManagerError as e:
        raise http_error(e)
    logger.info(f"[{user.id}] Signed out via API.")
    return ApiResponse(status="success", message="Signed out.")


@router.get("/me", response_model=ApiResponse)
async def current_user(user: User = Depends(get_current_user)):
    return ApiResponse(status="success", data=user)
