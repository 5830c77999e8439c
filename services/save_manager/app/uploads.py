# services/save_manager/app/uploads.py
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from core.config import settings, logger as core_logger
from core.errors import (
    DeleteFailed, RenameFailed, SaveFileNotFound, SaveManagerError, UploadInProgress,
)
from core.models import (
    BatchState, BatchValidation, PendingFile, RenamePending, RenamePhase, SaveFile,
    UploadOutcome, UploadProgress, User, plain_file_name, save_object_path,
)
from core.storage import SaveObjectStore
from core.utils import filter_save_files
from .quota import validate_batch

logger = core_logger.getChild("SaveManager").getChild("Uploads")

ProgressListener = Callable[[UploadProgress], None]


class SaveFileManager:
    """
    Owns the signed-in user's in-memory file list and every operation that
    changes it: batch uploads, rename, delete and label edits.

    Uploads within a batch run strictly one after another. Only one batch may
    be in flight at a time.
    """

    def __init__(self, store: SaveObjectStore):
        self.store = store
        self.files: Dict[str, SaveFile] = {}
        self.state: BatchState = BatchState.IDLE
        self.progress: Optional[UploadProgress] = None
        # Renames whose copy landed but whose source is not yet deleted, keyed by old name
        self.pending_renames: Dict[str, RenamePending] = {}

    def known_files(self) -> List[SaveFile]:
        return list(self.files.values())

    def search(self, query: str) -> List[SaveFile]:
        return filter_save_files(self.files.values(), query)

    async def refresh(self, user: User) -> List[SaveFile]:
        """Re-fetches the file list and per-file metadata from the store."""
        files = await self.store.list_files(user.id)
        self.files = {f.name: f for f in files}
        logger.info(f"[{user.id}] File list refreshed: {len(files)} files.")
        return files

    async def _get_file(self, user: User, name: str) -> SaveFile:
        if name in self.files:
            return self.files[name]
        try:
            return await self.store.get_file(user.id, name)
        except SaveManagerError as e:
            raise SaveFileNotFound(f"{name} was not found: {e.message}") from e

    # --- Uploads --------------------------------------------------------------

    def validate(self, pending_files: List[PendingFile]) -> BatchValidation:
        """Checks a batch against the last known file list."""
        if self.state == BatchState.TRANSFERRING:
            raise UploadInProgress("An upload is already in progress.")
        self.state = BatchState.VALIDATING
        result = validate_batch(pending_files, self.known_files())
        self.state = BatchState.REJECTED if result.quota_exceeded else BatchState.IDLE
        return result

    async def upload_batch(self, user: User, accepted_files: List[PendingFile],
                           labels: Optional[Dict[str, str]] = None, *, access_token: str,
                           on_progress: Optional[ProgressListener] = None) -> AsyncIterator[UploadOutcome]:
        """
        Uploads the files in order, yielding one outcome per file.

        A failed file is recorded and the batch moves on. Each file's `label`
        comes from `labels` (default ""). Progress goes to `on_progress` and to
        `self.progress`; it restarts at 0 for every file.
        """
        if self.state == BatchState.TRANSFERRING:
            raise UploadInProgress("An upload is already in progress.")
        labels = labels or {}
        self.state = BatchState.TRANSFERRING
        succeeded = 0
        try:
            for pending in accepted_files:
                outcome = await self._upload_one(user, pending, labels.get(pending.name, ""), access_token, on_progress)
                if outcome.succeeded:
                    succeeded += 1
                yield outcome
        finally:
            self.state = BatchState.IDLE
            self.progress = None

        logger.info(f"[{user.id}] Batch finished: {succeeded}/{len(accepted_files)} uploaded.")
        if succeeded:
            try:
                await self.refresh(user)
            except SaveManagerError as e:
                logger.warning(f"[{user.id}] Could not refresh file list after upload: {e.message}")

    async def _upload_one(self, user: User, pending: PendingFile, label: str, access_token: str,
                          on_progress: Optional[ProgressListener]) -> UploadOutcome:
        job_prefix = f"[{user.id}/{pending.name}]"

        def publish(done: int, total: int):
            current = self.progress
            # Never move backwards within one file's session
            if current is not None and current.file_name == pending.name and done < current.bytes_transferred:
                return
            self.progress = UploadProgress(file_name=pending.name, bytes_transferred=done, total_bytes=total)
            if on_progress:
                on_progress(self.progress.model_copy())

        self.progress = None
        publish(0, pending.size)
        logger.info(f"{job_prefix} Starting upload ({pending.size} bytes, label='{label}').")
        try:
            await self.store.upload_resumable(
                save_object_path(user.id, pending.name),
                pending.content,
                access_token=access_token,
                content_type=pending.content_type,
                metadata={"label": label},
                on_progress=publish,
            )
            logger.info(f"{job_prefix} Uploaded.")
            return UploadOutcome(file_name=pending.name, succeeded=True)
        except SaveManagerError as e:
            logger.error(f"{job_prefix} Upload failed: {e.message}")
            return UploadOutcome(file_name=pending.name, succeeded=False, error=e.message)
        except Exception as e:
            logger.error(f"{job_prefix} Unexpected error during upload: {e}", exc_info=True)
            return UploadOutcome(file_name=pending.name, succeeded=False, error=str(e))

    # --- Rename ---------------------------------------------------------------

    async def begin_rename(self, user: User, name: str, new_name: str) -> RenamePending:
        """Copies the object and its metadata under `new_name`. The source stays in place."""
        try:
            new_name = plain_file_name(new_name)
        except ValueError as e:
            raise RenameFailed(str(e)) from e
        if new_name == name:
            raise RenameFailed("The new name matches the current name.")
        old_path = save_object_path(user.id, name)
        try:
            existing = await self.store.get_file(user.id, name)
            content = await self.store.download(old_path)
            await self.store.upload(
                save_object_path(user.id, new_name),
                content,
                content_type=existing.content_type or "application/octet-stream",
                metadata={"label": existing.label},
            )
        except SaveManagerError as e:
            logger.error(f"[{user.id}] Rename copy '{name}' -> '{new_name}' failed: {e.message}")
            raise RenameFailed(e.message) from e

        pending = RenamePending(user_id=user.id, old_name=name, new_name=new_name, label=existing.label)
        self.pending_renames[name] = pending
        logger.info(f"[{user.id}] Rename '{name}' -> '{new_name}' copied; source pending deletion.")
        return pending

    async def complete_rename(self, user: User, pending: RenamePending) -> SaveFile:
        """Deletes the source of a copied rename and updates the in-memory list."""
        try:
            await self.store.remove([save_object_path(user.id, pending.old_name)])
        except SaveManagerError as e:
            logger.error(f"[{user.id}] Rename of '{pending.old_name}' left a duplicate: {e.message}")
            raise RenameFailed(e.message) from e

        pending.phase = RenamePhase.COMPLETED
        self.pending_renames.pop(pending.old_name, None)
        old = self.files.pop(pending.old_name, None)
        renamed = SaveFile(
            name=pending.new_name,
            size=old.size if old else 0,
            uploaded_at=old.uploaded_at if old else None,
            label=pending.label,
            content_type=old.content_type if old else None,
        )
        self.files[pending.new_name] = renamed
        return renamed

    async def rename_file(self, user: User, name: str, new_name: str) -> SaveFile:
        pending = await self.begin_rename(user, name, new_name)
        return await self.complete_rename(user, pending)

    async def recover_renames(self, user: User) -> List[RenamePending]:
        """
        Settles renames interrupted between copy and delete. When both objects
        exist the source is deleted; otherwise the entry is simply dropped.
        A failing existence check raises StorageError and keeps the entry.
        """
        settled: List[RenamePending] = []
        for old_name, pending in list(self.pending_renames.items()):
            if pending.user_id != user.id:
                continue
            old_exists = await self.store.exists(save_object_path(user.id, old_name))
            new_exists = await self.store.exists(save_object_path(user.id, pending.new_name))
            if old_exists and new_exists:
                await self.complete_rename(user, pending)
            else:
                self.pending_renames.pop(old_name, None)
                if new_exists:
                    pending.phase = RenamePhase.COMPLETED
            settled.append(pending)
        if settled:
            logger.info(f"[{user.id}] Recovered {len(settled)} interrupted renames.")
        return settled

    # --- Delete, label, download ---------------------------------------------

    async def delete_file(self, user: User, name: str) -> None:
        try:
            removed = await self.store.remove([save_object_path(user.id, name)])
        except SaveManagerError as e:
            raise DeleteFailed(e.message) from e
        if not removed:
            raise DeleteFailed(f"{name} was not found.")
        self.files.pop(name, None)
        logger.info(f"[{user.id}] Deleted '{name}'.")

    async def update_label(self, user: User, name: str, label: str) -> SaveFile:
        """Rewrites the object with new custom metadata; the content is unchanged."""
        current = await self._get_file(user, name)
        path = save_object_path(user.id, name)
        content = await self.store.download(path)
        await self.store.upload(
            path, content,
            content_type=current.content_type or "application/octet-stream",
            metadata={"label": label},
        )
        updated = current.model_copy(update={"label": label})
        self.files[name] = updated
        logger.info(f"[{user.id}] Label of '{name}' set to '{label}'.")
        return updated

    async def download(self, user: User, name: str) -> Tuple[str, bytes]:
        """Returns the save-as file name (label + extension) and the raw bytes."""
        save_file = await self._get_file(user, name)
        content = await self.store.download(save_object_path(user.id, name))
        return save_file.download_name, content

    async def download_url(self, user: User, name: str, expires_in: int = settings.DOWNLOAD_URL_TTL) -> str:
        return await self.store.create_signed_url(save_object_path(user.id, name), expires_in)
