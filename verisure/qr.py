"""
QR codec for product tokens.

Two extraction paths feed the same lookup: a real pixel decode of an uploaded
image, and (when the image carries no readable symbol) the uploaded file's
name, since downloaded codes are saved as ``<token>.png``. Both results pass
through ``sanitize_candidate`` so the directory always sees one token shape.
"""

import base64
import io
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Literal, Optional

import cv2
import numpy as np
import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image, ImageOps, UnidentifiedImageError

from verisure.config import get_settings
from verisure.errors import EncodeError, InvalidImageError

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "product"
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 9

_TOKEN_RE = re.compile(
    rf"^{TOKEN_PREFIX}_(?P<product_id>.+)_(?P<timestamp>\d+)_(?P<suffix>[a-z0-9]+)$"
)
_EXTENSION_RE = re.compile(r"\.(?:png|jpe?g|gif|bmp|webp)$", re.IGNORECASE)
_DUPLICATE_RE = re.compile(r"(?:\s+\(\d+\)|\s*-\s*copy|_copy)$", re.IGNORECASE)

# Quiet zone added around uploads before scanning; phone screenshots often crop it.
_SCAN_PADDING = 16


@dataclass(frozen=True)
class ExtractedToken:
    token: Optional[str]
    source: Literal["image", "filename", "none"]


# ============================================================================
# TOKENS
# ============================================================================


def generate_token(product_id: str) -> str:
    """Build a fresh token: ``product_<id>_<epoch millis>_<9 random chars>``."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{TOKEN_PREFIX}_{product_id}_{millis}_{suffix}"


def parse_token(token: str) -> Optional[str]:
    """Return the product identifier embedded in a token, or None."""
    match = _TOKEN_RE.match(token.strip())
    if not match:
        return None
    return match.group("product_id")


def sanitize_candidate(raw: str) -> str:
    """
    Normalize a decoded payload or an uploaded filename into a token.

    Strips a trailing image extension and the suffixes file managers append
    to duplicates (``" (2)"``, ``"- Copy"``, ``"_Copy"``), repeating until
    nothing changes so the result is a fixed point.
    """
    text = raw.strip()
    while True:
        cleaned = _EXTENSION_RE.sub("", text)
        cleaned = _DUPLICATE_RE.sub("", cleaned).strip()
        if cleaned == text:
            return cleaned
        text = cleaned


def download_filename(token: str) -> str:
    return f"{token}.png"


# ============================================================================
# ENCODING
# ============================================================================


def encode(token: str, size: Optional[int] = None, margin: Optional[int] = None) -> Image.Image:
    """Render ``token`` as a square, black-on-white QR image of ``size`` pixels."""
    settings = get_settings()
    size = size or settings.QR_SIZE
    margin = settings.QR_MARGIN if margin is None else margin

    if not token:
        raise EncodeError("Cannot encode an empty token")

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=margin,
    )
    qr.add_data(token)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        raise EncodeError(f"Token of {len(token)} characters exceeds QR capacity") from e

    modules = qr.modules_count + 2 * margin
    qr.box_size = max(1, size // modules)
    img = qr.make_image(fill_color="black", back_color="white").get_image()
    img = img.convert("L")
    if img.size != (size, size):
        img = img.resize((size, size), Image.NEAREST)

    logger.debug(f"Encoded token into version {qr.version} QR", extra={'token': token})
    return img


def encode_png(token: str, size: Optional[int] = None) -> bytes:
    buffer = io.BytesIO()
    encode(token, size=size).save(buffer, format="PNG")
    return buffer.getvalue()


def encode_data_url(token: str, size: Optional[int] = None) -> str:
    payload = base64.b64encode(encode_png(token, size=size)).decode("ascii")
    return f"data:image/png;base64,{payload}"


# ============================================================================
# DECODING
# ============================================================================


def _load_grayscale(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode in ("RGBA", "LA", "P"):
                # Transparent areas read as black otherwise
                background = Image.new("RGBA", img.size, (255, 255, 255, 255))
                img = Image.alpha_composite(background, img.convert("RGBA"))
            return img.convert("L")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise InvalidImageError(f"Unreadable image: {e}") from e


def decode_from_image(data: bytes) -> Optional[str]:
    """
    Scan image bytes for a QR symbol.

    Returns the embedded text, or None when no symbol is found. Raises
    InvalidImageError if the bytes are not an image at all.
    """
    gray = ImageOps.expand(_load_grayscale(data), border=_SCAN_PADDING, fill=255)
    # The classic detector misses some symbols whose finder patterns the Aruco one locates
    detectors = (cv2.QRCodeDetector(), cv2.QRCodeDetectorAruco())

    for scale in (1, 2):
        candidate = gray
        if scale > 1:
            candidate = gray.resize((gray.width * scale, gray.height * scale), Image.NEAREST)
        pixels = np.asarray(candidate, dtype=np.uint8)
        for detector in detectors:
            text, points, _ = detector.detectAndDecode(pixels)
            if text:
                return text

    logger.info("No QR symbol found in uploaded image")
    return None


def extract_token(data: Optional[bytes], filename: Optional[str] = None) -> ExtractedToken:
    """Pixel decode first, then the uploaded file's name."""
    if data:
        try:
            decoded = decode_from_image(data)
        except InvalidImageError as e:
            logger.warning(f"Image decode failed, falling back to filename: {e}")
            decoded = None
        if decoded:
            token = sanitize_candidate(decoded)
            if token:
                return ExtractedToken(token=token, source="image")

    if filename:
        basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
        token = sanitize_candidate(basename)
        if token:
            logger.info(f"Using filename-derived token: {token}")
            return ExtractedToken(token=token, source="filename")

    return ExtractedToken(token=None, source="none")
