"""Profile image storage on the local filesystem."""
import logging
import os
import shutil
import uuid
from typing import Optional

from fastapi import UploadFile

from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def check_image(upload: Optional[UploadFile]) -> Optional[str]:
    """Return the lower-cased extension of an acceptable upload, None when nothing was sent."""
    if upload is None or not upload.filename:
        return None
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError("Unsupported image type.", [f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"])
    return ext


def save_image(upload: Optional[UploadFile], images_dir: str) -> Optional[str]:
    """Store an uploaded image under a random name; return its relative path or None."""
    ext = check_image(upload)
    if ext is None:
        return None
    os.makedirs(images_dir, exist_ok=True)
    file_name = f"{uuid.uuid4()}{ext}"
    with open(os.path.join(images_dir, file_name), "wb") as out:
        shutil.copyfileobj(upload.file, out)
    logger.info("Stored profile image %s", file_name)
    return f"images/{file_name}"
