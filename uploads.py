import logging
import os
import uuid
from typing import List, Optional

from fastapi import UploadFile

from config import get_settings
from errors import ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"


def save_image(upload: UploadFile, subdir: str) -> str:
    """Store an uploaded image and return its public path, e.g. /uploads/products/<uuid>.png."""
    settings = get_settings()
    if upload.content_type not in settings.allowed_image_types:
        raise ValidationError(
            f"Invalid file type. Only {', '.join(settings.allowed_image_types)} are allowed."
        )
    content = upload.file.read(settings.max_file_size + 1)
    if len(content) > settings.max_file_size:
        raise ValidationError(f"File too large. Maximum size is {settings.max_file_size} bytes.")

    ext = os.path.splitext(upload.filename or "")[1].lower()
    filename = f"{uuid.uuid4()}{ext}"
    target_dir = os.path.join(settings.upload_dir, subdir)
    os.makedirs(target_dir, exist_ok=True)
    with open(os.path.join(target_dir, filename), "wb") as fh:
        fh.write(content)
    return f"{URL_PREFIX}{subdir}/{filename}"


def save_images(uploads: Optional[List[UploadFile]], subdir: str) -> List[str]:
    return [save_image(u, subdir) for u in uploads or [] if u.filename]


def delete_image(url: Optional[str]) -> bool:
    """Remove a stored upload. URLs not served from /uploads/ are left alone."""
    if not url or not url.startswith(URL_PREFIX):
        return False
    relative = url[len(URL_PREFIX):]
    root = os.path.abspath(get_settings().upload_dir)
    path = os.path.abspath(os.path.join(root, relative))
    if not path.startswith(root + os.sep):
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError:
        logger.warning(f"Could not delete upload {url}", exc_info=True)
        return False
    return True
