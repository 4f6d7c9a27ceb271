"""
Check-in token helpers and QR rendering
"""
import base64
import hashlib
import secrets
from io import BytesIO
from urllib.parse import urlencode

import qrcode

from fittrack.core import settings


def new_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def build_checkin_url(class_id: int, booking_id: int, token: str) -> str:
    query = urlencode({"c": class_id, "b": booking_id, "t": token})
    return f"{settings.FRONTEND_URL}/checkin?{query}"


def render_qr_png(data: str) -> str:
    """Render ``data`` as a PNG QR code and return it as a data URI"""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffered = BytesIO()
    img.save(buffered, format="PNG")
    encoded = base64.b64encode(buffered.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"
