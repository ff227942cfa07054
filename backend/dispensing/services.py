import logging
from typing import Optional, Dict, Any
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from .exceptions import StoreError
from .models import Patient, Provider, MedicationDefinition, DispensedMedication
from .qr import update_medication_qr
from .scheduling import scheduler

logger = logging.getLogger('dispensing')

TEMPLATE_FIELDS = [
    'ingredient1', 'concentration1', 'ingredient2', 'concentration2',
    'pharmacy', 'injectable', 'pharmacy_url', 'qr_url',
]
DISPENSE_FIELDS = [
    'dose', 'dose_unit', 'quantity', 'quantity_unit', 'frequency', 'amount_each_time',
    'additional_instructions', 'dispense_date', 'expiration_date', 'lot_number', 'is_active',
]


def create_patient(first_name: str, last_name: str, middle_name: str = '', birthdate=None, is_active: bool = True) -> Patient:
    patient = Patient(
        first_name=(first_name or '').strip(),
        middle_name=(middle_name or '').strip(),
        last_name=(last_name or '').strip(),
        birthdate=birthdate,
        is_active=is_active,
    )
    patient.clean()
    try:
        patient.save()
    except DatabaseError as e:
        logger.error(f"Failed to save patient {patient.display_name}: {str(e)}")
        raise StoreError(f"Could not save patient: {str(e)}") from e
    logger.info(f"New patient created - ID: {patient.id}, Name: {patient.display_name}")
    return patient


def find_or_create_provider(first_name: str, last_name: str, degree: Optional[str] = None) -> Provider:
    first_name = (first_name or '').strip()
    last_name = (last_name or '').strip()
    if not first_name and not last_name:
        raise ValidationError({'prescriber': 'Prescriber name is required'})
    provider, created = Provider.objects.get_or_create(
        first_name=first_name,
        last_name=last_name,
        defaults={'degree': degree or None}
    )
    if created:
        logger.info(f"New provider created - ID: {provider.id}, Name: {provider.display_name}")
    else:
        logger.debug(f"Existing provider found - ID: {provider.id}, Name: {provider.display_name}")
        if degree and provider.degree != degree:
            logger.info(f"Updating provider degree - ID: {provider.id}, Old: {provider.degree}, New: {degree}")
            provider.degree = degree
            provider.save(update_fields=['degree'])
    return provider


def find_or_create_medication(name: str, **template_fields) -> MedicationDefinition:
    name = (name or '').strip()
    if not name:
        raise ValidationError({'medication_name': 'Medication name is required'})
    values = {key: value for key, value in template_fields.items() if key in TEMPLATE_FIELDS}
    for key in ('concentration1', 'concentration2'):
        if values.get(key) is not None and values[key] < 0:
            raise ValidationError({key: 'Concentration cannot be negative'})
    medication, created = MedicationDefinition.objects.get_or_create(name=name, defaults=values)
    if created:
        logger.info(f"New medication template created - ID: {medication.id}, Name: {medication.name}")
        return update_medication_qr(medication)
    changed = [key for key, value in values.items() if getattr(medication, key) != value]
    if changed:
        logger.info(f"Updating medication template - ID: {medication.id}, Name: {medication.name}, fields: {', '.join(changed)}")
        for key in changed:
            setattr(medication, key, values[key])
        medication.save(update_fields=changed)
        if 'qr_url' in changed:
            update_medication_qr(medication)
    return medication


def record_dispense(patient: Patient, data: Dict[str, Any], schedule: bool = False) -> DispensedMedication:
    """Record a dispense event for ``patient``.

    The prescriber is reused by first and last name and the medication
    template by name; the template takes the submitted ingredient data.
    With ``schedule`` the new record gets its first next dose date; if that
    save fails nothing is recorded and the ``StoreError`` is raised.
    """
    try:
        with transaction.atomic():
            provider = find_or_create_provider(
                data.get('prescriber_first_name', ''),
                data.get('prescriber_last_name', ''),
                data.get('prescriber_degree'),
            )
            template_values = {key: data[key] for key in TEMPLATE_FIELDS if key in data}
            medication = find_or_create_medication(data.get('medication_name', ''), **template_values)
            dispense = DispensedMedication(
                patient=patient,
                medication=medication,
                prescriber=provider,
                **{key: data[key] for key in DISPENSE_FIELDS if key in data}
            )
            dispense.save()
            if schedule:
                result = scheduler.update_next_dose(dispense)
                if not result.ok:
                    raise result.error
    except DatabaseError as e:
        logger.error(f"Failed to record dispense for patient ID: {patient.id}, error: {str(e)}")
        raise StoreError(f"Could not save dispensed medication: {str(e)}") from e
    except StoreError:
        logger.error(f"Initial schedule failed, dispense not recorded for patient ID: {patient.id}")
        raise
    logger.info(f"Dispense recorded - ID: {dispense.id}, Patient ID: {patient.id}, Medication: {medication.name}")
    return dispense


def update_dispense(dispense: DispensedMedication, data: Dict[str, Any]) -> DispensedMedication:
    changed = [key for key in DISPENSE_FIELDS if key in data and getattr(dispense, key) != data[key]]
    # save() re-derives dose_value and sig before the write
    original = {key: getattr(dispense, key) for key in changed + ['dose_value', 'sig']}
    provider_changed = 'prescriber_first_name' in data or 'prescriber_last_name' in data
    original_prescriber = dispense.prescriber
    try:
        with transaction.atomic():
            if provider_changed:
                dispense.prescriber = find_or_create_provider(
                    data.get('prescriber_first_name', dispense.prescriber.first_name),
                    data.get('prescriber_last_name', dispense.prescriber.last_name),
                    data.get('prescriber_degree'),
                )
            for key in changed:
                setattr(dispense, key, data[key])
            dispense.save()
    except DatabaseError as e:
        for key, value in original.items():
            setattr(dispense, key, value)
        dispense.prescriber = original_prescriber
        logger.error(f"Failed to update dispense ID: {dispense.id}, error: {str(e)}")
        raise StoreError(f"Could not save dispensed medication: {str(e)}") from e
    logger.info(f"Dispense updated - ID: {dispense.id}, fields: {', '.join(changed) or 'none'}")
    return dispense
