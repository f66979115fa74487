"""
Signature payload decoding, rendering and signer metadata capture
"""

import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, Optional

import numpy as np
from fastapi import Request
from PIL import Image, UnidentifiedImageError
from user_agents import parse

from config import settings
from app.services.signing_errors import MissingSignature, InvalidSignatureData

logger = logging.getLogger(__name__)


class SignatureProcessingOptions:
    """Configuration options for signature rendering"""

    def __init__(self):
        self.background_threshold = 240  # Light pixels above this become transparent
        self.padding = 10  # Pixels of padding around the signature
        self.output_format = "PNG"


@dataclass
class RenderedSignature:
    """A validated signature ready to be stored"""
    data_url: str
    sha256: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class SignatureService:
    """Turns a submitted canvas payload into a stored signature reference"""

    @staticmethod
    def decode_payload(signature_data: Optional[str], max_bytes: Optional[int] = None) -> bytes:
        """Decode a base64 payload, with or without a data URL prefix"""
        if signature_data is None or not signature_data.strip():
            raise MissingSignature()

        payload = signature_data.strip()
        if payload.startswith("data:"):
            header, _, payload = payload.partition(",")
            if not header.startswith("data:image/") or ";base64" not in header:
                raise InvalidSignatureData("Signature must be a base64 encoded image")

        try:
            decoded = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidSignatureData("Signature data is not valid base64")

        if not decoded:
            raise MissingSignature()

        max_bytes = max_bytes or settings.MAX_SIGNATURE_BYTES
        if len(decoded) > max_bytes:
            raise InvalidSignatureData(f"Signature image too large (max {max_bytes // (1024 * 1024)}MB)")

        return decoded

    @staticmethod
    def load_image(image_bytes: bytes) -> Image.Image:
        try:
            with Image.open(BytesIO(image_bytes)) as probe:
                probe.verify()
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise InvalidSignatureData(f"Signature is not a readable image: {e}")

        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return image

    @staticmethod
    def _remove_background(image: Image.Image, options: SignatureProcessingOptions) -> Image.Image:
        """Make white/light background pixels transparent"""
        img_array = np.array(image)

        gray = np.dot(img_array[..., :3], [0.2989, 0.5870, 0.1140])
        img_array[..., 3] = np.where(gray > options.background_threshold, 0, img_array[..., 3]).astype(np.uint8)

        return Image.fromarray(img_array)

    @staticmethod
    def _auto_crop(image: Image.Image, options: SignatureProcessingOptions) -> Optional[Image.Image]:
        """Crop to the visible strokes plus padding; None when nothing is drawn"""
        bbox = image.getbbox()
        if not bbox:
            return None

        left, top, right, bottom = bbox
        width, height = image.size
        return image.crop((
            max(0, left - options.padding),
            max(0, top - options.padding),
            min(width, right + options.padding),
            min(height, bottom + options.padding),
        ))

    @staticmethod
    def render(signature_data: Optional[str], options: Optional[SignatureProcessingOptions] = None) -> RenderedSignature:
        """Validate and normalise a submitted signature.

        Raises MissingSignature for an empty payload or a blank canvas and
        InvalidSignatureData for anything that is not an image.
        """
        options = options or SignatureProcessingOptions()

        image_bytes = SignatureService.decode_payload(signature_data)
        image = SignatureService.load_image(image_bytes)
        original_size = image.size

        cleaned = SignatureService._remove_background(image, options)
        cropped = SignatureService._auto_crop(cleaned, options)
        if cropped is None:
            raise MissingSignature("The signature is blank")

        buffer = BytesIO()
        cropped.save(buffer, format=options.output_format)
        encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")

        return RenderedSignature(
            data_url=f"data:image/{options.output_format.lower()};base64,{encoded}",
            sha256=hashlib.sha256(image_bytes).hexdigest(),
            metadata={
                "original_width": original_size[0],
                "original_height": original_size[1],
                "width": cropped.width,
                "height": cropped.height,
                "format": options.output_format,
            },
        )

    @staticmethod
    def get_client_ip(request: Optional[Request]) -> Optional[str]:
        """Extract client IP from request"""
        if request is None:
            return None

        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

        return request.client.host if request.client else None

    @staticmethod
    def get_device_info(user_agent_string: Optional[str]) -> Optional[str]:
        """Summarise a user agent string as JSON device information"""
        if not user_agent_string:
            return None

        user_agent = parse(user_agent_string)
        device_info = {
            "browser": f"{user_agent.browser.family} {user_agent.browser.version_string}".strip(),
            "os": f"{user_agent.os.family} {user_agent.os.version_string}".strip(),
            "device": user_agent.device.family,
            "is_mobile": user_agent.is_mobile,
            "is_tablet": user_agent.is_tablet,
            "is_pc": user_agent.is_pc,
        }
        return json.dumps(device_info)
