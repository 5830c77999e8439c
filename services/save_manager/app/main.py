# services/save_manager/app/main.py
from fastapi import FastAPI, Request, HTTPException, status
from core.config import settings, logger as core_logger
from core.auth import AuthClient
from core.errors import SaveManagerError
from core.models import ApiResponse, User
from core.session import SessionState
from core.storage import SaveObjectStore
from core.supabase_client import get_admin_client, get_supabase_client
from .account import AccountService
from .locations import SaveLocationSynchronizer
from .uploads import SaveFileManager
import httpx
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, Optional

logger = core_logger.getChild("SaveManager")


class UserWorkspace:
    """Per-user state: the file list, the save-location map and the rename journal."""

    def __init__(self, store: SaveObjectStore, supabase: Any):
        self.files = SaveFileManager(store)
        self.locations = SaveLocationSynchronizer(supabase)
        self.loaded = False

    async def load(self, user: User) -> None:
        """Fetches the file list, then the locations for that file set."""
        await self.files.refresh(user)
        await self.locations.load_locations(user, self.files.files.keys())
        self.loaded = True


def reset_workspace(app: FastAPI, previous: Optional[User] = None, current: Optional[User] = None) -> None:
    logger.info(f"Signed-in user changed ({previous.id if previous else None} -> {current.id if current else None}). Resetting workspace.")
    app.state.workspace = UserWorkspace(app.state.store, app.state.supabase)


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the collaborators, starts the session subscription and tears both down."""
    timeout_config = httpx.Timeout(120.0, connect=30.0)
    app.state.http_client = httpx.AsyncClient(timeout=timeout_config)
    app.state.session = None
    try:
        supabase = await get_supabase_client()
        app.state.supabase = supabase
        app.state.store = SaveObjectStore(supabase, app.state.http_client)
        app.state.auth = AuthClient(supabase, get_admin_client)
        app.state.account = AccountService(app.state.auth, app.state.store)
        reset_workspace(app)
        session = SessionState(supabase)
        await session.start()
        session.add_listener(partial(reset_workspace, app))
        app.state.session = session
        logger.info("Save Manager started. Session state and HTTPX Client initialized.")
    except Exception as e:
        # Keep serving /health so the failure is visible; other routes answer 503
        logger.error(f"Failed to initialize Save Manager collaborators: {e}", exc_info=True)

    yield # Application runs

    if app.state.session is not None:
        app.state.session.close()
    await app.state.http_client.aclose()
    logger.info("Save Manager stopped. HTTPX Client closed.")


# --- FastAPI App Instance ---
app = FastAPI(
    title="Game Save Manager",
    description="Uploads, labels and tracks game save files in per-user cloud storage.",
    version="1.0.0",
    lifespan=lifespan
)


# --- Dependencies ---
def http_error(e: SaveManagerError) -> HTTPException:
    """Converts a domain error into the HTTP error returned to the client."""
    return HTTPException(status_code=e.status_code, detail=e.message)


def get_session(request: Request) -> SessionState:
    session = getattr(request.app.state, "session", None)
    if session is None:
        logger.error("Session dependency not met: Session state not available.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Internal error: session not ready")
    return session


def get_current_user(request: Request) -> User:
    try:
        return get_session(request).require_user()
    except SaveManagerError as e:
        raise http_error(e)


def get_access_token(request: Request) -> str:
    try:
        return get_session(request).require_access_token()
    except SaveManagerError as e:
        raise http_error(e)


def get_workspace(request: Request) -> UserWorkspace:
    get_session(request)
    return request.app.state.workspace


def get_auth(request: Request) -> AuthClient:
    get_session(request)
    return request.app.state.auth


def get_account(request: Request) -> AccountService:
    get_session(request)
    return request.app.state.account


async def ensure_loaded(workspace: UserWorkspace, user: User) -> UserWorkspace:
    if not workspace.loaded:
        try:
            await workspace.load(user)
        except SaveManagerError as e:
            raise http_error(e)
    return workspace


# --- Health Check ---
@app.get("/health", response_model=ApiResponse, tags=["Meta"])
async def health_check(request: Request):
    session = getattr(request.app.state, "session", None)
    if session is None:
        return ApiResponse(status="error", message="Save Manager is running (Supabase: NOT initialized)")
    signed_in = session.current_user is not None
    return ApiResponse(
        status="success",
        data={"signed_in": signed_in, "bucket": settings.SAVE_STORAGE_BUCKET},
        message="Save Manager is running",
    )


# --- Routing ---
# Import routers AFTER app and dependencies are defined
from .routers import account, auth, files, locations

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(files.router, prefix="/files", tags=["Files"])
app.include_router(locations.router, prefix="/locations", tags=["Locations"])
app.include_router(account.router, prefix="/account", tags=["Account"])
