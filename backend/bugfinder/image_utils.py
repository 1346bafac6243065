"""Screenshot helpers: compress before sending to the LLM, write to disk for the frontend."""
from PIL import Image
from datetime import datetime, timezone
import io
import os
import re
import base64


def optimize_screenshot(screenshot_bytes: bytes, max_width: int = 1280,
                        max_height: int = 8000, quality: int = 75) -> bytes:
    """
    Resize and compress a full-page screenshot for API consumption.
    Full-page captures can be very tall, so height is capped as well
    (the bottom is cropped, the top of the page matters most for bug triage).
    """
    img = Image.open(io.BytesIO(screenshot_bytes))

    w, h = img.size
    if w > max_width:
        ratio = max_width / w
        w, h = max_width, int(h * ratio)
        img = img.resize((w, h), Image.LANCZOS)
    if h > max_height:
        img = img.crop((0, 0, w, max_height))

    # Convert RGBA to RGB (JPEG doesn't support alpha)
    if img.mode == 'RGBA':
        bg = Image.new('RGB', img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[3])
        img = bg
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=quality, optimize=True)
    return buf.getvalue()


def screenshot_to_b64(screenshot_bytes: bytes, compress: bool = True,
                      max_width: int = 1280, quality: int = 75) -> tuple[str, str]:
    """
    Convert screenshot bytes to base64 string.
    Returns (base64_string, media_type).
    """
    if compress:
        optimized = optimize_screenshot(screenshot_bytes, max_width=max_width, quality=quality)
        return base64.b64encode(optimized).decode(), "image/jpeg"
    else:
        return base64.b64encode(screenshot_bytes).decode(), "image/png"


def url_slug(url: str, max_len: int = 80) -> str:
    """https://example.com/a?b=1 -> example_com_a_b_1"""
    slug = re.sub(r"^https?://", "", url)
    return re.sub(r"[^a-zA-Z0-9]", "_", slug)[:max_len]


def save_screenshot(screenshot_bytes: bytes, url: str, output_dir: str) -> str:
    """Write a full-page PNG to output_dir. Returns the bare filename."""
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    filename = f"{url_slug(url)}_{timestamp}_fullpage.png"
    with open(os.path.join(output_dir, filename), "wb") as f:
        f.write(screenshot_bytes)
    return filename
