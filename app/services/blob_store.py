"""Local-disk storage for payment proof images.

Records only keep the URL returned by `save_payment_proof`; the bytes live
under PAYMENT_PROOFS_DIR and are served by the groupfund router.
"""
import logging
from pathlib import Path
from typing import Optional
from uuid import UUID

from app.core.clock import utcnow
from app.core.config import PAYMENT_PROOFS_DIR
from app.core.exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp"}
MAX_PROOF_BYTES = 5 * 1024 * 1024
PROOF_URL_PREFIX = "/api/groupfund/proofs/"

MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def save_payment_proof(record_id: UUID, filename: Optional[str], content: bytes, kind: str = "proof") -> str:
    """Store an uploaded proof and return its URL."""
    file_ext = Path(filename).suffix.lower() if filename else ""
    if file_ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}")
    if not content:
        raise ValidationError("Uploaded file is empty")
    if len(content) > MAX_PROOF_BYTES:
        raise ValidationError("File too large (max 5 MB)")

    PAYMENT_PROOFS_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = utcnow().strftime("%Y%m%d_%H%M%S")
    safe_filename = "".join(c for c in Path(filename).name if c.isalnum() or c in "._-")
    stored_name = f"{kind}_{record_id}_{timestamp}_{safe_filename}"
    (PAYMENT_PROOFS_DIR / stored_name).write_bytes(content)

    logger.info("Stored payment proof %s (%d bytes)", stored_name, len(content))
    return f"{PROOF_URL_PREFIX}{stored_name}"


def resolve_payment_proof(filename: str) -> Path:
    """Path of a stored proof; refuses anything outside PAYMENT_PROOFS_DIR."""
    safe_filename = Path(filename).name
    file_path = PAYMENT_PROOFS_DIR / safe_filename
    if not file_path.exists() or not str(file_path.resolve()).startswith(str(PAYMENT_PROOFS_DIR.resolve())):
        raise NotFound("File not found")
    return file_path
