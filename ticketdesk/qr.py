import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M


def qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return buffered.getvalue()


def qr_data_url(ticket_code: str) -> str:
    """Same code in, same bytes out: nothing time or random based is mixed
    into the image, so the stored value can always be re-derived."""
    png = qr_png(ticket_code)
    return "data:image/png;base64," + base64.b64encode(png).decode()
