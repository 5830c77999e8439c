# core/errors.py
"""
Error taxonomy shared by the collaborators and services.

Collaborator exceptions (storage, postgrest, auth, httpx) are caught where the
call is made and re-raised as one of these, keeping the original message.
Routers turn them into HTTP errors using `status_code`.
"""


class SaveManagerError(Exception):
    """Base class for all recoverable operation failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class QuotaExceeded(SaveManagerError):
    status_code = 413


class FileTooLarge(SaveManagerError):
    status_code = 413


class TransferFailed(SaveManagerError):
    status_code = 502


class DeleteFailed(SaveManagerError):
    status_code = 502


class RenameFailed(SaveManagerError):
    status_code = 502


class ConfirmationMismatch(SaveManagerError):
    status_code = 400


class ProfileUpdateFailed(SaveManagerError):
    status_code = 400


class AccountDeletionFailed(SaveManagerError):
    status_code = 502


class StorageError(SaveManagerError):
    status_code = 502


class MetadataStoreError(SaveManagerError):
    status_code = 502


class AuthError(SaveManagerError):
    status_code = 401


class NotSignedIn(AuthError):
    pass


class UploadInProgress(SaveManagerError):
    status_code = 409


class SaveFileNotFound(SaveManagerError):
    status_code = 404
