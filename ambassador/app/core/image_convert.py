"""
Normalisation of uploaded story screenshots to WebP (Pillow).
"""
import io

from PIL import Image, ImageOps

DEFAULT_QUALITY = 85
SCREENSHOT_MAX_SIDE_PX = 1920


def validate_image_content(content: bytes) -> bool:
    """Magic-byte check: JPEG, PNG, WebP or GIF."""
    if content.startswith(b'\xff\xd8\xff'):
        return True
    if content.startswith(b'\x89PNG\r\n\x1a\n'):
        return True
    if content.startswith(b'RIFF') and b'WEBP' in content[:12]:
        return True
    if content.startswith(b'GIF87a') or content.startswith(b'GIF89a'):
        return True
    return False


def convert_screenshot_to_webp(
    content: bytes,
    max_side_px: int = SCREENSHOT_MAX_SIDE_PX,
    quality: int = DEFAULT_QUALITY,
) -> bytes:
    """
    Re-encode a screenshot as WebP.

    Applies the EXIF orientation, drops alpha and shrinks the image so its
    longer side is at most ``max_side_px``. Screenshots are tall, so no
    cropping is done.

    :raises ValueError: content is not an image or cannot be decoded.
    """
    if not validate_image_content(content):
        raise ValueError("File is not an image")
    try:
        img = Image.open(io.BytesIO(content))
        img.verify()
        # verify() leaves the image unusable, reopen it
        img = Image.open(io.BytesIO(content))
        img = ImageOps.exif_transpose(img)
        if img.mode in ("RGBA", "P", "LA"):
            img = img.convert("RGB")
        w, h = img.size
        if max(w, h) > max_side_px:
            ratio = max_side_px / max(w, h)
            img = img.resize((int(w * ratio), int(h * ratio)), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        img.save(out, "WEBP", quality=quality)
        return out.getvalue()
    except (OSError, Image.DecompressionBombError, SyntaxError) as e:
        raise ValueError("Could not process image") from e
