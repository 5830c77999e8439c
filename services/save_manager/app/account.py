# services/save_manager/app/account.py
from typing import Optional

from core.auth import AuthClient
from core.config import settings, logger as core_logger
from core.errors import (
    AccountDeletionFailed, AuthError, ConfirmationMismatch, ProfileUpdateFailed, SaveManagerError,
)
from core.models import PendingFile, User, avatar_object_path, save_object_path
from core.storage import SaveObjectStore
from core.utils import format_bytes

logger = core_logger.getChild("SaveManager").getChild("Account")

DELETE_CONFIRMATION = "DELETE"
AVATAR_URL_TTL = 60 * 60 * 24 * 365 # the profile keeps this URL, so make it long-lived


class AccountService:
    def __init__(self, auth: AuthClient, store: SaveObjectStore):
        self.auth = auth
        self.store = store

    async def delete_account(self, user: User, confirmation_text: str) -> None:
        """
        Deletes every save object, the avatar and finally the identity.
        File and avatar removal are best-effort; a failing identity deletion
        is reported but the files stay deleted.
        """
        if confirmation_text != DELETE_CONFIRMATION:
            raise ConfirmationMismatch(f"You must type {DELETE_CONFIRMATION} to confirm.")

        job_prefix = f"[{user.id}]"
        logger.warning(f"{job_prefix} Account deletion confirmed.")
        try:
            names = await self.store.list_names(user.id)
            removed = await self.store.remove([save_object_path(user.id, name) for name in names])
            logger.info(f"{job_prefix} Removed {len(removed)} save files.")
        except SaveManagerError as e:
            logger.info(f"{job_prefix} No save files removed: {e.message}")

        try:
            await self.store.remove([avatar_object_path(user.id)])
        except SaveManagerError as e:
            logger.info(f"{job_prefix} No avatar removed: {e.message}")

        try:
            await self.auth.delete_user(user.id)
        except AuthError as e:
            logger.error(f"{job_prefix} Files deleted but identity deletion failed: {e.message}")
            raise AccountDeletionFailed(e.message) from e
        logger.warning(f"{job_prefix} Account deleted.")

    async def update_profile(self, user: User, display_name: Optional[str] = None,
                             avatar: Optional[PendingFile] = None) -> User:
        """Updates the display name and/or uploads a new avatar image."""
        if display_name is not None:
            display_name = display_name.strip()
            if not display_name:
                raise ProfileUpdateFailed("Name cannot be empty.")
            if len(display_name) > settings.DISPLAY_NAME_MAX_LENGTH:
                raise ProfileUpdateFailed(f"Name must be at most {settings.DISPLAY_NAME_MAX_LENGTH} characters.")
        if avatar is not None:
            if avatar.size > settings.AVATAR_MAX_SIZE:
                raise ProfileUpdateFailed(f"Image must be less than {format_bytes(settings.AVATAR_MAX_SIZE)}.")
            if not avatar.content_type.startswith("image/"):
                raise ProfileUpdateFailed("Avatar must be an image.")

        updated = user
        try:
            if display_name is not None and display_name != user.display_name:
                updated = await self.auth.update_profile(display_name=display_name)
                logger.info(f"[{user.id}] Display name updated.")
            if avatar is not None:
                avatar_path = avatar_object_path(user.id)
                await self.store.upload(avatar_path, avatar.content, content_type=avatar.content_type)
                avatar_url = await self.store.create_signed_url(avatar_path, AVATAR_URL_TTL)
                updated = await self.auth.update_profile(avatar_url=avatar_url)
                logger.info(f"[{user.id}] Profile picture updated.")
        except SaveManagerError as e:
            logger.error(f"[{user.id}] Profile update failed: {e.message}")
            raise ProfileUpdateFailed(e.message) from e
        return updated
