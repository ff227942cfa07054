import csv
import io
import logging
from datetime import date, datetime
from typing import Optional, List
from django.db.models import Q
from .models import DispensedMedication
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment

logger = logging.getLogger('dispensing')

HEADERS = [
    'Dispense ID',
    'Dispense Date',
    'Patient Last Name',
    'Patient First Name',
    'Medication',
    'Dose',
    'Fill (mL)',
    'Quantity',
    'Sig',
    'Prescriber',
    'Pharmacy',
    'Lot Number',
    'Expiration Date',
    'Next Dose Due',
    'Active'
]

def get_dispenses_for_export(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    prescriber: Optional[str] = None,
    medication: Optional[str] = None
) -> List[DispensedMedication]:
    queryset = DispensedMedication.objects.select_related('patient', 'prescriber', 'medication').all()

    if start_date:
        queryset = queryset.filter(dispense_date__gte=start_date)

    if end_date:
        queryset = queryset.filter(dispense_date__lte=end_date)

    if prescriber:
        queryset = queryset.filter(
            Q(prescriber__last_name__iexact=prescriber) | Q(prescriber__first_name__iexact=prescriber)
        )

    if medication:
        queryset = queryset.filter(medication__name__iexact=medication)

    queryset = queryset.order_by('-dispense_date', '-created_at')

    dispenses = list(queryset)
    logger.info(f"Export query returned {len(dispenses)} dispenses")
    if start_date or end_date:
        logger.info(f"Date filter - start: {start_date}, end: {end_date}")
    if prescriber:
        logger.info(f"Prescriber filter: {prescriber}")
    if medication:
        logger.info(f"Medication filter: {medication}")

    return dispenses

def _row(dispense: DispensedMedication) -> list:
    fill = dispense.fill_amount
    return [
        dispense.id,
        dispense.dispense_date.strftime('%Y-%m-%d'),
        dispense.patient.last_name,
        dispense.patient.first_name,
        dispense.medication.name,
        f"{dispense.dose}{dispense.dose_unit}" if dispense.dose else '',
        f"{fill:.2f}" if fill else '',
        dispense.dispensed_quantity_text,
        dispense.instructions,
        dispense.prescriber.display_name,
        dispense.medication.pharmacy,
        dispense.lot_number,
        dispense.expiration_date.strftime('%Y-%m-%d') if dispense.expiration_date else '',
        dispense.next_dose_due.strftime('%Y-%m-%d') if dispense.next_dose_due else '',
        'Yes' if dispense.is_active else 'No'
    ]

def export_to_csv(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    prescriber: Optional[str] = None,
    medication: Optional[str] = None
) -> str:
    dispenses = get_dispenses_for_export(start_date, end_date, prescriber, medication)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(HEADERS)
    for dispense in dispenses:
        writer.writerow(_row(dispense))

    csv_content = output.getvalue()
    output.close()

    logger.info(f"CSV export generated with {len(dispenses)} dispenses")
    return csv_content

def export_to_excel(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    prescriber: Optional[str] = None,
    medication: Optional[str] = None
) -> bytes:
    dispenses = get_dispenses_for_export(start_date, end_date, prescriber, medication)

    wb = Workbook()
    ws = wb.active
    ws.title = "Dispense Log"

    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    header_alignment = Alignment(horizontal="center", vertical="center")

    for col_idx, header in enumerate(HEADERS, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = header_alignment

    for row_idx, dispense in enumerate(dispenses, 2):
        for col_idx, value in enumerate(_row(dispense), 1):
            ws.cell(row=row_idx, column=col_idx, value=value)

    summary_row = len(dispenses) + 3
    scheduled_count = sum(1 for dispense in dispenses if dispense.next_dose_due)

    ws.cell(row=summary_row, column=1, value="Total Dispenses:").font = Font(bold=True)
    ws.cell(row=summary_row, column=2, value=len(dispenses))

    ws.cell(row=summary_row + 1, column=1, value="Scheduled:").font = Font(bold=True)
    ws.cell(row=summary_row + 1, column=2, value=scheduled_count)

    for col in range(1, len(HEADERS) + 1):
        column_letter = ws.cell(row=1, column=col).column_letter
        max_length = 0
        for row in ws.iter_rows(min_row=1, max_row=len(dispenses) + 1, min_col=col, max_col=col):
            cell_value = str(row[0].value) if row[0].value else ''
            max_length = max(max_length, len(cell_value))
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    output = io.BytesIO()
    wb.save(output)
    excel_content = output.getvalue()
    output.close()

    logger.info(f"Excel export generated with {len(dispenses)} dispenses")
    return excel_content

def get_export_stats(dispenses: List[DispensedMedication]) -> dict:
    return {
        "total_dispenses": len(dispenses),
        "scheduled": sum(1 for dispense in dispenses if dispense.next_dose_due),
        "active_patients": len({dispense.patient_id for dispense in dispenses if dispense.patient.is_active}),
        "medications": sorted({dispense.medication.name for dispense in dispenses}),
        "prescribers": sorted({dispense.prescriber.display_name for dispense in dispenses}),
    }

def get_export_filename(
    format: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> str:
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

    if start_date and end_date:
        date_range = f"{start_date.strftime('%Y%m%d')}_to_{end_date.strftime('%Y%m%d')}"
        filename = f"dispense_log_{date_range}_{timestamp}.{format}"
    elif start_date:
        date_range = f"from_{start_date.strftime('%Y%m%d')}"
        filename = f"dispense_log_{date_range}_{timestamp}.{format}"
    elif end_date:
        date_range = f"until_{end_date.strftime('%Y%m%d')}"
        filename = f"dispense_log_{date_range}_{timestamp}.{format}"
    else:
        filename = f"dispense_log_{timestamp}.{format}"

    return filename
