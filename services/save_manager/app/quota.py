# services/save_manager/app/quota.py
from typing import Iterable, List

from core.config import settings, logger as core_logger
from core.models import BatchValidation, PendingFile, RejectedFile, RejectionReason, SaveFile
from core.utils import format_bytes

logger = core_logger.getChild("SaveManager").getChild("Quota")


def compute_used_bytes(known_files: Iterable[SaveFile]) -> int:
    """Sums the sizes of the currently known save files. Does not fetch."""
    return sum(f.size or 0 for f in known_files)


def validate_batch(pending_files: List[PendingFile], known_files: Iterable[SaveFile],
                   max_file_size: int = settings.MAX_FILE_SIZE,
                   total_limit: int = settings.USER_TOTAL_LIMIT) -> BatchValidation:
    """
    Checks a candidate batch against the account and per-file limits.

    The account check is all-or-nothing and runs once for the whole batch; only
    when it passes are files judged individually against the per-file limit.
    The known files are a snapshot, so concurrent sessions may still overshoot.
    """
    used = compute_used_bytes(known_files)
    total_new = sum(f.size for f in pending_files)

    if used + total_new > total_limit:
        logger.warning(f"Batch of {len(pending_files)} files rejected: {used} used + {total_new} new exceeds {total_limit}.")
        return BatchValidation(rejected=[
            RejectedFile(name=f.name, size=f.size, reason=RejectionReason.QUOTA_EXCEEDED)
            for f in pending_files
        ])

    result = BatchValidation()
    for f in pending_files:
        if f.size > max_file_size:
            logger.warning(f"[{f.name}] Rejected: {f.size} bytes exceeds per-file limit {max_file_size}.")
            result.rejected.append(RejectedFile(name=f.name, size=f.size, reason=RejectionReason.FILE_TOO_LARGE))
        else:
            result.accepted.append(f)
    return result


def rejection_message(rejected: RejectedFile, max_file_size: int = settings.MAX_FILE_SIZE,
                      total_limit: int = settings.USER_TOTAL_LIMIT) -> str:
    if rejected.reason == RejectionReason.QUOTA_EXCEEDED:
        return f"Upload would exceed your {format_bytes(total_limit)} total storage limit."
    return f"File {rejected.name} is too large. Max {format_bytes(max_file_size)}."
