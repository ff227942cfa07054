from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Dict, Any
from django.utils import timezone
from .models import Patient, MedicationDefinition, DispensedMedication
from .services import TEMPLATE_FIELDS

@dataclass
class DispenseWarning:
    warning_type: str
    severity: str
    message: str
    existing_record: Optional[Dict[str, Any]] = None

    def to_dict(self):
        result = {
            "type": self.warning_type,
            "severity": self.severity,
            "message": self.message
        }
        if self.existing_record:
            result["existing_record"] = self.existing_record
        return result

class DispenseChecker:

    @staticmethod
    def check_expiration(dispense_date: Optional[date], expiration_date: Optional[date]) -> Optional[DispenseWarning]:
        if expiration_date is None:
            return None
        if dispense_date and expiration_date < dispense_date:
            return DispenseWarning(
                warning_type="expiration_before_dispense",
                severity="warning",
                message=f"Expiration date {expiration_date.isoformat()} is earlier than dispense date {dispense_date.isoformat()}"
            )
        if expiration_date < timezone.localdate():
            return DispenseWarning(
                warning_type="expired_lot",
                severity="warning",
                message=f"Lot expired on {expiration_date.isoformat()}"
            )
        return None

    @staticmethod
    def check_template_change(medication_name: str, template_values: Dict[str, Any]) -> Optional[DispenseWarning]:
        try:
            existing = MedicationDefinition.objects.get(name=medication_name)
        except MedicationDefinition.DoesNotExist:
            return None
        changed = [
            key for key in TEMPLATE_FIELDS
            if key in template_values and getattr(existing, key) != template_values[key]
        ]
        if not changed:
            return None
        return DispenseWarning(
            warning_type="template_will_update",
            severity="warning",
            message=f"Medication template '{existing.name}' already exists and will be updated: {', '.join(changed)}. Every dispense of this medication shares the template.",
            existing_record={
                "id": existing.id,
                "name": existing.name,
                "ingredient1": existing.ingredient1,
                "concentration1": existing.concentration1,
                "ingredient2": existing.ingredient2,
                "concentration2": existing.concentration2,
                "pharmacy": existing.pharmacy,
                "injectable": existing.injectable,
            }
        )

    @staticmethod
    def check_duplicate_dispense(patient: Patient, medication_name: str) -> Optional[DispenseWarning]:
        recent = DispensedMedication.objects.filter(
            patient=patient,
            medication__name=medication_name,
            created_at__gte=timezone.now() - timedelta(days=1)
        )
        if not recent.exists():
            return None
        details = []
        for dispense in recent:
            details.append({
                "dispense_id": dispense.id,
                "medication_name": medication_name,
                "dose": dispense.dose,
                "dispense_date": dispense.dispense_date.isoformat(),
                "created_at": dispense.created_at.isoformat()
            })
        dispense_ids = ', '.join(str(d["dispense_id"]) for d in details)
        return DispenseWarning(
            warning_type="potential_duplicate_dispense",
            severity="warning",
            message=f"{medication_name} was already dispensed to this patient within the last 24 hours. Dispense ID(s): {dispense_ids}",
            existing_record={
                "dispenses": details,
                "count": len(details)
            }
        )

    @staticmethod
    def validate_dispense(patient: Patient, data: Dict[str, Any]) -> Dict[str, Any]:
        warnings: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        medication_name = data.get('medication_name', '')
        checks = [
            DispenseChecker.check_expiration(data.get('dispense_date'), data.get('expiration_date')),
            DispenseChecker.check_template_change(medication_name, data),
            DispenseChecker.check_duplicate_dispense(patient, medication_name),
        ]
        for warning in checks:
            if warning is None:
                continue
            if warning.severity == "error":
                errors.append(warning.to_dict())
            else:
                warnings.append(warning.to_dict())

        valid = len(errors) == 0

        message = "Validation passed"
        if errors:
            message = f"Validation failed: {len(errors)} error(s) found that must be resolved"
        elif warnings:
            message = f"Validation passed with {len(warnings)} warning(s) requiring confirmation"

        return {
            "valid": valid,
            "warnings": warnings,
            "errors": errors,
            "message": message
        }
