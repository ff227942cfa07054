from django.db import models
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.utils import timezone
from .dosing import parse_dose, compute_fill_amount, format_fill_display


class DoseUnit(models.TextChoices):
    MG = 'mg', 'mg'
    MCG = 'mcg', 'mcg'
    ML = 'ml', 'mL'
    UNITS = 'units', 'units'


class QuantityUnit(models.TextChoices):
    SYRINGE = 'syringe', 'Syringe'
    PEN = 'pen', 'Pen'
    TABLET = 'tablet', 'Tablet'
    VIAL = 'vial', 'Vial'
    BOTTLE = 'bottle', 'Bottle'

    def label_for(self, quantity):
        return self.value if quantity == 1 else f"{self.value}s"

    @classmethod
    def from_string(cls, value):
        normalized = (value or '').strip().lower()
        if normalized.endswith('s') and normalized[:-1] in cls.values:
            normalized = normalized[:-1]
        if normalized in cls.values:
            return cls(normalized)
        return cls.SYRINGE


class DosingFrequency(models.TextChoices):
    DAILY = 'daily', 'Daily'
    WEEKLY = 'weekly', 'Weekly'
    BIWEEKLY = 'biweekly', 'Every 2 weeks'
    MONTHLY = 'monthly', 'Monthly'
    CUSTOM = 'custom', 'Custom'

    @property
    def instructions_suffix(self):
        return {
            'daily': 'daily',
            'weekly': 'weekly',
            'biweekly': 'every 2 weeks',
            'monthly': 'monthly',
            'custom': 'as directed',
        }[self.value]


class Degree(models.TextChoices):
    MD = 'MD', 'MD'
    PA = 'PA', 'PA'
    NP = 'NP', 'NP'


class ScheduleState(models.TextChoices):
    UNSCHEDULED = 'unscheduled', 'Unscheduled'
    SCHEDULED = 'scheduled', 'Scheduled'


class Patient(models.Model):
    first_name = models.CharField(max_length=100)
    middle_name = models.CharField(max_length=100, blank=True, default='')
    last_name = models.CharField(max_length=100)
    birthdate = models.DateField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    class Meta:
        db_table = 'patients'
        ordering = ['last_name', 'first_name']
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='patients_name_idx'),
        ]
    def __str__(self):
        return self.full_name
    def clean(self):
        errors = {}
        if not (self.first_name or '').strip():
            errors['first_name'] = 'First name is required'
        if not (self.last_name or '').strip():
            errors['last_name'] = 'Last name is required'
        if errors:
            raise ValidationError(errors)
    @property
    def full_name(self):
        return f"{self.last_name or ''}, {self.first_name or ''}".strip()
    @property
    def display_name(self):
        first = self.first_name or ''
        last = self.last_name or ''
        if first and last:
            return f"{first} {last}"
        return last or first or 'Unknown Patient'


class Provider(models.Model):
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    degree = models.CharField(max_length=2, choices=Degree.choices, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    class Meta:
        db_table = 'providers'
        constraints = [
            models.UniqueConstraint(fields=['first_name', 'last_name'], name='unique_provider_name')
        ]
    def __str__(self):
        return self.display_name
    @property
    def display_name(self):
        name = f"{self.first_name} {self.last_name}".strip()
        if self.degree and name:
            return f"{name}, {self.degree}"
        return name


class MedicationDefinition(models.Model):
    name = models.CharField(max_length=200, unique=True)
    ingredient1 = models.CharField(max_length=200, blank=True, default='')
    concentration1 = models.FloatField(default=0, validators=[MinValueValidator(0)])
    ingredient2 = models.CharField(max_length=200, blank=True, default='')
    concentration2 = models.FloatField(default=0, validators=[MinValueValidator(0)])
    pharmacy = models.CharField(max_length=200, blank=True, default='')
    injectable = models.BooleanField(default=True)
    pharmacy_url = models.URLField(blank=True, default='')
    qr_url = models.URLField(blank=True, default='')
    qr_image = models.BinaryField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    class Meta:
        db_table = 'medication_definitions'
        ordering = ['name']
    def __str__(self):
        return self.name
    @property
    def concentration_info(self):
        parts = []
        if self.ingredient1 and self.concentration1 > 0:
            parts.append(f"{self.ingredient1} {self.concentration1:.1f}mg")
        if self.ingredient2 and self.concentration2 > 0:
            parts.append(f"{self.ingredient2} {self.concentration2:.1f}mg")
        return ', '.join(parts)


class DispensedMedication(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='dispenses')
    medication = models.ForeignKey(MedicationDefinition, on_delete=models.PROTECT, related_name='dispenses')
    prescriber = models.ForeignKey(Provider, on_delete=models.PROTECT, related_name='dispenses')
    dose = models.CharField(max_length=50, blank=True, default='')
    dose_value = models.FloatField(default=0)
    dose_unit = models.CharField(max_length=10, choices=DoseUnit.choices, default=DoseUnit.MG)
    quantity = models.PositiveSmallIntegerField(default=1, validators=[MinValueValidator(1)])
    quantity_unit = models.CharField(max_length=10, choices=QuantityUnit.choices, default=QuantityUnit.SYRINGE)
    frequency = models.CharField(max_length=10, choices=DosingFrequency.choices, default=DosingFrequency.WEEKLY)
    amount_each_time = models.PositiveSmallIntegerField(default=1, validators=[MinValueValidator(1)])
    additional_instructions = models.TextField(blank=True, default='')
    dispense_date = models.DateField(default=timezone.localdate)
    expiration_date = models.DateField(blank=True, null=True)
    lot_number = models.CharField(max_length=50, blank=True, default='')
    is_active = models.BooleanField(default=True)
    next_dose_due = models.DateField(blank=True, null=True, editable=False)
    sig = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    class Meta:
        db_table = 'dispensed_medications'
        ordering = ['-dispense_date', '-created_at']
        indexes = [
            models.Index(fields=['next_dose_due'], name='dispense_next_dose_idx'),
        ]
    def __str__(self):
        return f"{self.display_name} for {self.patient}"
    def save(self, *args, **kwargs):
        update_fields = kwargs.get('update_fields')
        derived = set()
        if update_fields is None or 'dose' in update_fields:
            self.dose_value = parse_dose(self.dose)
            derived.add('dose_value')
        if update_fields is None or {'amount_each_time', 'quantity_unit', 'frequency'} & set(update_fields):
            self.sig = self.build_sig()
            derived.add('sig')
        if update_fields is not None and derived:
            kwargs['update_fields'] = set(update_fields) | derived
        super().save(*args, **kwargs)
    def build_sig(self):
        unit = QuantityUnit.from_string(self.quantity_unit)
        suffix = DosingFrequency(self.frequency).instructions_suffix
        return f"{self.amount_each_time} {unit.label_for(self.amount_each_time)} {suffix}"
    @property
    def display_name(self):
        name = self.medication.name if self.medication_id else 'Unknown Medication'
        if self.dose:
            return f"{name} {self.dose}{self.dose_unit}"
        return name
    @property
    def dispensed_quantity_text(self):
        if self.quantity < 1:
            return ''
        unit = QuantityUnit.from_string(self.quantity_unit)
        return f"{self.quantity} {unit.label_for(self.quantity)}"
    @property
    def instructions(self):
        if not self.sig:
            return 'Take as directed.'
        if self.additional_instructions:
            return f"{self.sig} {self.additional_instructions}"
        return self.sig
    @property
    def fill_amount(self):
        if not self.medication.injectable:
            return None
        return compute_fill_amount(self.dose_value, self.dose_unit, self.medication.concentration1)
    @property
    def fill_display(self):
        fill = self.fill_amount
        return format_fill_display(fill) if fill is not None else ''
    @property
    def is_expired(self):
        return self.expiration_date is not None and self.expiration_date < timezone.localdate()
    @property
    def schedule_state(self):
        if self.next_dose_due is None:
            return ScheduleState.UNSCHEDULED
        return ScheduleState.SCHEDULED
