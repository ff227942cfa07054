import logging
from io import BytesIO
import qrcode
from django.conf import settings
from .models import MedicationDefinition

logger = logging.getLogger('dispensing')


def generate_qr_png(text: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer)
    return buffer.getvalue()


def update_medication_qr(medication: MedicationDefinition) -> MedicationDefinition:
    """Regenerate the label QR image from ``qr_url``.

    Falls back to ``DISPENSARY['DEFAULT_QR_URL']``; with neither set the
    stored image is cleared.
    """
    url = medication.qr_url or getattr(settings, 'DISPENSARY', {}).get('DEFAULT_QR_URL', '')
    if url:
        medication.qr_image = generate_qr_png(url)
        logger.info(f"QR code generated - medication ID: {medication.id}, url: {url}")
    else:
        medication.qr_image = None
        logger.debug(f"No QR url for medication ID: {medication.id}, image cleared")
    medication.save(update_fields=['qr_image'])
    return medication
