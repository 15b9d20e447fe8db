"""
Decodificación de payloads escaneados

Convierte el texto leído de un QR (cámara o ingreso manual) o una imagen subida
en una TicketReference. Para imágenes se prueba una cadena de transformaciones
de costo creciente hasta que alguna permita leer el código.
"""
import asyncio
import io
import json
import logging
import math
from typing import Callable, List, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from services.ticket_validation.exceptions import DecodeError
from services.ticket_validation.models.domain import ErrorKind, TicketReference

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("eventId", "ticketId", "userId", "bookingId")
BINARIZE_THRESHOLD = 128
UPSCALE_FACTOR = 2

QrReader = Callable[[Image.Image], Optional[str]]
ImageTransform = Callable[[Image.Image], Image.Image]


def encode_payload(ref: TicketReference) -> str:
    """Construir el payload JSON canónico que va embebido en el QR"""
    timestamp = int(ref.timestamp) if float(ref.timestamp).is_integer() else ref.timestamp
    return json.dumps({
        "eventId": ref.event_id,
        "ticketId": ref.ticket_id,
        "bookingId": ref.booking_id,
        "userId": ref.user_id,
        "timestamp": timestamp,
    })


def _malformed(detail: str) -> DecodeError:
    return DecodeError(
        ErrorKind.MALFORMED_PAYLOAD,
        f"Formato de QR inválido: {detail}",
    )


def decode_text(raw: str) -> TicketReference:
    """
    Decodificar el texto de un QR

    Función pura: el mismo texto siempre produce la misma referencia o el
    mismo error.

    Raises:
        DecodeError: MalformedPayload si falta algún campo o no es JSON
    """
    text = raw.strip() if isinstance(raw, str) else ""
    if not text:
        raise _malformed("payload vacío")

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        raise _malformed("no es JSON")

    if not isinstance(data, dict):
        raise _malformed("se esperaba un objeto JSON")

    missing = [
        field for field in REQUIRED_FIELDS
        if not isinstance(data.get(field), str) or not data[field].strip()
    ]
    if missing:
        raise _malformed(f"faltan campos {', '.join(missing)}")

    timestamp = data.get("timestamp")
    # bool es subclase de int en Python
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
        raise _malformed("timestamp inválido")

    return TicketReference(
        event_id=data["eventId"].strip(),
        ticket_id=data["ticketId"].strip(),
        booking_id=data["bookingId"].strip(),
        user_id=data["userId"].strip(),
        timestamp=float(timestamp),
    )


# ============ CADENA DE LECTURA DE IMÁGENES ============

def original(image: Image.Image) -> Image.Image:
    return image


def binarized(image: Image.Image) -> Image.Image:
    """Escala de grises y umbral en el punto medio del canal para subir el contraste"""
    gray = ImageOps.grayscale(image)
    return gray.point(lambda value: 255 if value > BINARIZE_THRESHOLD else 0)


def upscaled(image: Image.Image) -> Image.Image:
    """Ampliar 2x con vecino más cercano (códigos pequeños o de baja resolución)"""
    width, height = image.size
    return image.resize((width * UPSCALE_FACTOR, height * UPSCALE_FACTOR), Image.Resampling.NEAREST)


DEFAULT_STRATEGIES: List[Tuple[str, ImageTransform]] = [
    ("original", original),
    ("binarized", binarized),
    ("upscaled", upscaled),
]


def read_qr_opencv(image: Image.Image) -> Optional[str]:
    """Leer un QR con el detector de OpenCV"""
    array = np.array(image.convert("RGB"))
    detector = cv2.QRCodeDetector()
    try:
        text, _points, _straight = detector.detectAndDecode(array)
    except cv2.error as e:
        logger.debug(f"OpenCV no pudo procesar la imagen: {e}")
        return None
    return text or None


class PayloadDecoder:
    """Decodificador de escaneos (texto o imagen)"""

    def __init__(
        self,
        reader: QrReader = read_qr_opencv,
        strategies: Optional[List[Tuple[str, ImageTransform]]] = None,
    ):
        self.reader = reader
        self.strategies = strategies if strategies is not None else DEFAULT_STRATEGIES

    def decode(self, raw: Union[str, bytes]) -> TicketReference:
        if isinstance(raw, (bytes, bytearray)):
            return decode_text(self.read_image(bytes(raw)))
        return decode_text(raw)

    async def decode_async(self, raw: Union[str, bytes]) -> TicketReference:
        """Igual que decode(), pero las imágenes se procesan fuera del event loop"""
        if isinstance(raw, (bytes, bytearray)):
            loop = asyncio.get_running_loop()
            text = await loop.run_in_executor(None, self.read_image, bytes(raw))
            return decode_text(text)
        return decode_text(raw)

    def read_image(self, data: bytes) -> str:
        """
        Extraer el texto del QR de una imagen probando cada estrategia en orden

        Raises:
            DecodeError: UnreadableImage si ninguna estrategia logra leer el código
        """
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.info(f"Imagen no reconocida: {e}")
            raise self._unreadable()

        image = image.convert("RGB")
        for name, transform in self.strategies:
            text = self.reader(transform(image))
            if text:
                logger.info(f"QR leído con estrategia '{name}'")
                return text
            logger.debug(f"Estrategia '{name}' sin resultado")

        raise self._unreadable()

    @staticmethod
    def _unreadable() -> DecodeError:
        return DecodeError(
            ErrorKind.UNREADABLE_IMAGE,
            "No se pudo leer el código QR de la imagen. "
            "Intenta con una imagen de mayor resolución o ingresa el código manualmente.",
        )
