"""
QR decoder backed by pyzbar.

Takes one camera image, returns the decoded payloads in the order zbar
reported them. Text starting with ``WIFI:`` is reported as a Wi-Fi payload,
any other UTF-8 text as plain text, and binary content as ``OTHER``.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

import cv2
import numpy as np

# pyzbar loads libzbar at import time; without it the decoder reports every frame as failed.
try:
    from pyzbar.pyzbar import ZBarSymbol, decode as zbar_decode
except ImportError:
    ZBarSymbol = None
    zbar_decode = None

from ..payloads import DecodedPayload, ValueType, payload_from_text

logger = logging.getLogger(__name__)

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class DecodeError(RuntimeError):
    """Raised when the decoder cannot process a frame."""


class Decoder(Protocol):
    def decode(self, image: np.ndarray, rotation_degrees: int = 0) -> List[DecodedPayload]:
        ...


class PyzbarDecoder:
    """Decode QR codes from BGR or grayscale frames."""

    def __init__(self, symbols: Optional[Sequence[ZBarSymbol]] = None) -> None:
        if zbar_decode is None:
            logger.warning("zbar shared library not available - QR decoding disabled")
        # Restricting to QR avoids noisy zbar warnings from the other symbologies.
        if symbols:
            self.symbols = list(symbols)
        else:
            self.symbols = [ZBarSymbol.QRCODE] if ZBarSymbol is not None else []

    def decode(self, image: np.ndarray, rotation_degrees: int = 0) -> List[DecodedPayload]:
        if image is None or getattr(image, "size", 0) == 0:
            raise DecodeError("empty frame")
        if zbar_decode is None:
            raise DecodeError("zbar library not available")
        try:
            gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
            rotation = _ROTATIONS.get(rotation_degrees % 360)
            if rotation is not None:
                gray = cv2.rotate(gray, rotation)
            symbols = zbar_decode(gray, symbols=self.symbols or None)
        except Exception as exc:
            raise DecodeError(f"zbar decode failed: {exc}") from exc

        payloads: List[DecodedPayload] = []
        for symbol in symbols:
            try:
                text = symbol.data.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Non UTF-8 %s symbol reported as OTHER", symbol.type)
                payloads.append(DecodedPayload(raw_value_type=ValueType.OTHER))
                continue
            payloads.append(payload_from_text(text.strip("\x00")))
        return payloads


__all__ = ["DecodeError", "Decoder", "PyzbarDecoder"]
