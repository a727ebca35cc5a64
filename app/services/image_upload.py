"""
Validation and naming for uploaded images.

Only png, jpg, jpeg and webp are accepted; both the file extension and the
declared MIME type must match.
"""
import os
import random
import re
import time
from typing import Optional

from core.exceptions import ValidationError

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".webp"}
ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|webp")
SAFE_NAME = re.compile(r"^image-\d+-\d+\.(jpeg|jpg|png|webp)$")


def validate_image(filename: Optional[str], content_type: Optional[str], size: int, max_size: int) -> str:
    """
    Check an uploaded image.

    Returns:
        Lowercased file extension including the dot

    Raises:
        ValidationError: missing file, disallowed type, or too large
    """
    if not filename:
        raise ValidationError("No file uploaded")

    extension = os.path.splitext(filename)[1].lower()
    if not (extension in ALLOWED_EXTENSIONS and ALLOWED_TYPES.search(content_type or "")):
        raise ValidationError("Only .png, .jpg, .jpeg, .webp images are allowed")

    if size == 0:
        raise ValidationError("No file uploaded")
    if size > max_size:
        raise ValidationError(f"File too large (max {max_size} bytes)")

    return extension


def generate_image_name(extension: str) -> str:
    """Unique stored name: image-<millis>-<random><ext>."""
    unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 999_999_999)}"
    return f"image-{unique_suffix}{extension}"


def is_safe_image_name(filename: str) -> bool:
    """Only names produced by generate_image_name may be served back."""
    return bool(SAFE_NAME.match(filename))
