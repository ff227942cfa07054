import logging
from dataclasses import dataclass, asdict
from datetime import date
from typing import List, Optional, Dict, Any
from django.conf import settings
from django.utils.module_loading import import_string
from .models import DispensedMedication
from .scheduling import NextDoseScheduler, ScheduleResult, scheduler as default_scheduler

logger = logging.getLogger('dispensing')

DEFAULT_LABEL_PRINTER = 'dispensing.labels.PlainTextLabelPrinter'


@dataclass
class LabelData:
    patient_name: str
    medication_name: str
    dose: str
    dose_unit: str
    title: str
    secondary_ingredient: str
    injectable: bool
    fill_amount: Optional[float]
    fill_display: str
    dispensed_quantity: str
    instructions: str
    prescriber_name: str
    pharmacy_text: str
    practice_info: str
    lot_number: str
    expiration_date: Optional[date]
    qr_url: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expiration_date"] = self.expiration_date.isoformat() if self.expiration_date else None
        return data


def build_label_data(dispense: DispensedMedication) -> LabelData:
    medication = dispense.medication
    patient = dispense.patient
    patient_name = f"{patient.last_name or 'Unknown'}, {patient.first_name or 'Patient'}"

    secondary = ''
    if medication.ingredient2 and medication.concentration2 > 0:
        secondary = f"{medication.ingredient2} {medication.concentration2:.1f}mg"

    fill_amount = dispense.fill_amount
    fill_display = dispense.fill_display
    pharmacy_text = medication.pharmacy
    if medication.injectable and fill_display:
        pharmacy_text = f"{medication.pharmacy} {fill_display}".strip()

    return LabelData(
        patient_name=patient_name,
        medication_name=medication.name,
        dose=dispense.dose,
        dose_unit=dispense.dose_unit,
        title=dispense.display_name,
        secondary_ingredient=secondary,
        injectable=medication.injectable,
        fill_amount=fill_amount,
        fill_display=fill_display,
        dispensed_quantity=dispense.dispensed_quantity_text,
        instructions=dispense.instructions,
        prescriber_name=dispense.prescriber.display_name,
        pharmacy_text=pharmacy_text,
        practice_info=getattr(settings, 'DISPENSARY', {}).get('PRACTICE_INFO', ''),
        lot_number=dispense.lot_number,
        expiration_date=dispense.expiration_date,
        qr_url=medication.qr_url,
    )


class LabelPrinter:
    """Turns label data into a printable document.

    Subclasses implement ``render``. ``connect`` and ``disconnect`` bracket a
    print session; the printer can be used as a context manager.
    """

    content_type = 'application/octet-stream'
    extension = 'bin'

    def connect(self):
        pass

    def disconnect(self):
        pass

    def render(self, labels: List[LabelData]) -> bytes:
        raise NotImplementedError

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False


class PlainTextLabelPrinter(LabelPrinter):
    content_type = 'text/plain'
    extension = 'txt'

    def render(self, labels: List[LabelData]) -> bytes:
        pages = []
        for label in labels:
            lines = [label.patient_name, label.title]
            if label.secondary_ingredient:
                lines.append(label.secondary_ingredient)
            if label.dispensed_quantity:
                lines.append(f"Disp: {label.dispensed_quantity}")
            lines.append(f"Sig: {label.instructions}")
            if label.prescriber_name:
                lines.append(f"Prescriber: {label.prescriber_name}")
            if label.lot_number:
                lines.append(f"Lot: {label.lot_number}")
            if label.expiration_date:
                lines.append(f"Exp: {label.expiration_date.strftime('%m/%d/%Y')}")
            if label.practice_info:
                lines.append(label.practice_info)
            if label.pharmacy_text:
                lines.append(label.pharmacy_text)
            pages.append('\n'.join(lines))
        return '\n\f\n'.join(pages).encode('utf-8')


def get_label_printer() -> LabelPrinter:
    path = getattr(settings, 'DISPENSARY', {}).get('LABEL_PRINTER', DEFAULT_LABEL_PRINTER)
    return import_string(path)()


@dataclass
class PrintOutcome:
    document: bytes
    schedules: List[ScheduleResult]

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.schedules)


class PrintService:

    def __init__(self, printer: Optional[LabelPrinter] = None, scheduler: Optional[NextDoseScheduler] = None):
        self.printer = printer or get_label_printer()
        self.scheduler = scheduler or default_scheduler

    def render(self, dispenses: List[DispensedMedication]) -> bytes:
        labels = [build_label_data(dispense) for dispense in dispenses]
        with self.printer as printer:
            document = printer.render(labels)
        logger.info(f"Rendered {len(labels)} label(s), {len(document)} bytes")
        return document

    def reprint(self, dispense: DispensedMedication) -> bytes:
        logger.info(f"Reprint requested - dispense ID: {dispense.pk}")
        return self.render([dispense])

    def print_and_update(self, dispense: DispensedMedication) -> PrintOutcome:
        return self.print_batch([dispense])

    def print_batch(self, dispenses: List[DispensedMedication]) -> PrintOutcome:
        # The schedule only moves once the document exists.
        document = self.render(dispenses)
        schedules = [self.scheduler.apply_print_update(dispense) for dispense in dispenses]
        return PrintOutcome(document=document, schedules=schedules)
