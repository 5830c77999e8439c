from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any
from enum import Enum
import datetime
import os

# --- Utility Functions ---

def save_object_path(user_id: str, file_name: str) -> str:
    """Object path of a save file inside the storage bucket."""
    return f"{user_id}/{file_name}"

def avatar_object_path(user_id: str) -> str:
    return f"avatars/{user_id}/avatar.jpg"

def plain_file_name(name: str) -> str:
    """Strips `name` and rejects anything that is not a single path segment."""
    name = name.strip()
    if not name or "/" in name or name in {".", ".."}:
        raise ValueError("File name must be non-empty and must not contain '/'.")
    return name

# --- Core Data Models ---

class User(BaseModel):
    """Identity issued by the auth provider. Read-only apart from profile updates."""
    id: str = Field(..., description="Stable unique user id")
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_auth_user(cls, auth_user: Any) -> "User":
        """Builds a User from a Supabase auth user object (or its dict form)."""
        data = auth_user if isinstance(auth_user, dict) else auth_user.model_dump()
        meta = data.get("user_metadata") or {}
        return cls(
            id=str(data["id"]),
            display_name=meta.get("display_name") or meta.get("full_name") or meta.get("name"),
            email=data.get("email"),
            avatar_url=meta.get("avatar_url") or meta.get("picture"),
        )

class SaveFile(BaseModel):
    """One uploaded save object. `name` is unique within the owner's namespace."""
    name: str
    size: int = Field(default=0, ge=0, description="Size in bytes")
    uploaded_at: Optional[datetime.datetime] = None
    label: str = Field(default="", description="Free-text game title stored as custom object metadata")
    content_type: Optional[str] = None

    @property
    def download_name(self) -> str:
        """Label plus the original extension, or the plain name when unlabeled."""
        if not self.label:
            return self.name
        _, ext = os.path.splitext(self.name)
        return f"{self.label}{ext}"

class PendingFile(BaseModel):
    """A file picked for upload but not transferred yet."""
    name: str
    size: int = Field(..., ge=0)
    content: bytes = Field(default=b"", repr=False)
    content_type: str = "application/octet-stream"

    @field_validator("name")
    @classmethod
    def name_is_plain(cls, v: str) -> str:
        return plain_file_name(v)

class RejectionReason(str, Enum):
    QUOTA_EXCEEDED = "QuotaExceeded"
    FILE_TOO_LARGE = "FileTooLarge"

class RejectedFile(BaseModel):
    name: str
    size: int
    reason: RejectionReason

class BatchValidation(BaseModel):
    """Result of checking a candidate batch against the quota."""
    accepted: List[PendingFile] = Field(default_factory=list)
    rejected: List[RejectedFile] = Field(default_factory=list)

    @property
    def quota_exceeded(self) -> bool:
        return any(r.reason == RejectionReason.QUOTA_EXCEEDED for r in self.rejected)

class UploadProgress(BaseModel):
    """Snapshot of one in-flight transfer (the upload session)."""
    file_name: str
    bytes_transferred: int = 0
    total_bytes: int = 0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return 100.0 * self.bytes_transferred / self.total_bytes

class UploadOutcome(BaseModel):
    file_name: str
    succeeded: bool
    error: Optional[str] = None

class BatchState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    REJECTED = "rejected"
    TRANSFERRING = "transferring"

class RenamePhase(str, Enum):
    COPIED = "copied" # new object written, old one still present
    COMPLETED = "completed"

class RenamePending(BaseModel):
    """Intermediate state of a copy-then-delete rename."""
    user_id: str
    old_name: str
    new_name: str
    label: str = ""
    phase: RenamePhase = RenamePhase.COPIED

# --- API Request/Response Models ---

class SignInRequest(BaseModel):
    email: str
    password: str

class SignUpRequest(BaseModel):
    email: str
    password: str
    confirm_password: str

class RenameRequest(BaseModel):
    new_name: str

    @field_validator("new_name")
    @classmethod
    def new_name_is_plain(cls, v: str) -> str:
        return plain_file_name(v)

class LabelRequest(BaseModel):
    label: str = ""

class LocationValue(BaseModel):
    value: str = ""

class DeleteAccountRequest(BaseModel):
    confirmation: str

class FileListing(BaseModel):
    files: List[SaveFile]
    used_bytes: int
    limit_bytes: int

class ApiResponse(BaseModel):
    """Standard response wrapper. `message` is the transient notice shown to the user."""
    status: str = Field(description="'success' or 'error'")
    data: Any | None = Field(default=None, description="The primary data payload (depends on the endpoint)")
    message: Optional[str] = Field(default=None, description="Optional status message or error details")
