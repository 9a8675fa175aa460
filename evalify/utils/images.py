"""Course image uploads.

Uploaded images are verified with Pillow, shrunk to a thumbnail and
re-encoded as PNG so that only well-formed image data is ever served.
"""

import io
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

THUMBNAIL_SIZE = (640, 640)


def validate_image(payload: bytes) -> None:
    """Raise `ValueError` unless `payload` is a readable image."""
    if not payload:
        raise ValueError("Empty image upload")
    try:
        Image.open(io.BytesIO(payload)).verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValueError("Unsupported file content; expected an image")


def save_course_image(payload: bytes, course_id: int, upload_dir: str) -> str:
    """Store a normalized copy of the image and return its public path."""
    validate_image(payload)
    # verify() leaves the image unusable, so decode it again
    img = Image.open(io.BytesIO(payload))
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    img.thumbnail(THUMBNAIL_SIZE)
    target = Path(upload_dir) / "courses"
    target.mkdir(parents=True, exist_ok=True)
    name = f"{course_id}-{uuid.uuid4().hex[:8]}.png"
    img.save(target / name, format="PNG")
    return f"/uploads/courses/{name}"
