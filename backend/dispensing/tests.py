from django.test import TestCase, Client, override_settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError
from django.db.models import Model
from django.utils import timezone
from datetime import date, datetime, timedelta
from types import SimpleNamespace
from unittest import mock
import json
from .models import (
    Patient, Provider, MedicationDefinition, DispensedMedication,
    DosingFrequency, QuantityUnit, ScheduleState
)
from .dosing import parse_dose, compute_fill_amount, fill_units, format_fill_display
from .scheduling import NextDoseScheduler, ScheduleResult, compute_next_dose_due, SCHEDULED, NOOP, FAILED
from .scheduling import scheduler as default_scheduler
from .qr import generate_qr_png, update_medication_qr
from .dashboard import group_patients_by_week, earliest_due, week_start
from .labels import LabelPrinter, PlainTextLabelPrinter, PrintService, build_label_data
from .services import create_patient, find_or_create_provider, find_or_create_medication, record_dispense, update_dispense
from .dispense_checker import DispenseChecker, DispenseWarning
from .exceptions import StoreError, SchedulerError
from .export import export_to_csv, export_to_excel, get_dispenses_for_export, get_export_filename, get_export_stats

# A Tuesday
TODAY = date(2025, 10, 14)
PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


def fail_next_dose_save():
    """Make only the scheduler's next_dose_due write fail."""
    real_save = DispensedMedication.save

    def save(instance, *args, **kwargs):
        if kwargs.get('update_fields') == ['next_dose_due']:
            raise DatabaseError("disk full")
        return real_save(instance, *args, **kwargs)

    return mock.patch.object(DispensedMedication, 'save', save)


def make_fixtures():
    patient = Patient.objects.create(first_name="Brittany", last_name="Kratzer")
    provider = Provider.objects.create(first_name="Jane", last_name="Smith", degree="MD")
    medication = MedicationDefinition.objects.create(
        name="Tirzepatide",
        ingredient1="Tirzepatide",
        concentration1=50,
        ingredient2="Pyridoxine",
        concentration2=2.5,
        pharmacy="Empower",
        injectable=True
    )
    return patient, provider, medication


def make_dispense(patient, medication, provider, **kwargs):
    values = {
        "dose": "10",
        "dose_unit": "mg",
        "quantity": 4,
        "quantity_unit": "syringe",
        "frequency": "weekly",
        "amount_each_time": 1,
        "dispense_date": TODAY - timedelta(days=3),
        "lot_number": "LOT-001",
    }
    values.update(kwargs)
    return DispensedMedication.objects.create(
        patient=patient,
        medication=medication,
        prescriber=provider,
        **values
    )


class PatientModelTest(TestCase):
    def setUp(self):
        self.patient = Patient.objects.create(
            first_name="John",
            last_name="Doe"
        )

    def test_patient_creation(self):
        self.assertEqual(self.patient.first_name, "John")
        self.assertEqual(self.patient.last_name, "Doe")
        self.assertTrue(self.patient.is_active)

    def test_patient_str(self):
        self.assertEqual(str(self.patient), "Doe, John")

    def test_patient_display_name(self):
        self.assertEqual(self.patient.display_name, "John Doe")
        self.assertEqual(Patient(last_name="Doe").display_name, "Doe")
        self.assertEqual(Patient().display_name, "Unknown Patient")

    def test_patient_blank_name_validation(self):
        patient = Patient(first_name="   ", last_name="")
        try:
            patient.clean()
            self.fail("ValidationError should have been raised")
        except ValidationError as e:
            self.assertIn('first_name', e.message_dict)
            self.assertIn('last_name', e.message_dict)

    def test_patient_cascade_delete(self):
        provider = Provider.objects.create(first_name="Jane", last_name="Smith")
        medication = MedicationDefinition.objects.create(name="Semaglutide", concentration1=2.5)
        make_dispense(self.patient, medication, provider)
        self.patient.delete()
        self.assertEqual(DispensedMedication.objects.count(), 0)
        self.assertEqual(MedicationDefinition.objects.count(), 1)
        self.assertEqual(Provider.objects.count(), 1)


class ProviderModelTest(TestCase):
    def setUp(self):
        self.provider = Provider.objects.create(
            first_name="Alice",
            last_name="Johnson",
            degree="NP"
        )

    def test_provider_display_name(self):
        self.assertEqual(self.provider.display_name, "Alice Johnson, NP")
        self.assertEqual(Provider(first_name="Bob", last_name="Lee").display_name, "Bob Lee")

    def test_provider_name_unique(self):
        with self.assertRaises(IntegrityError):
            Provider.objects.create(first_name="Alice", last_name="Johnson")


class DispensedMedicationModelTest(TestCase):
    def setUp(self):
        self.patient, self.provider, self.medication = make_fixtures()

    def test_dose_value_parsed_on_save(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, dose="12.5")
        self.assertEqual(dispense.dose_value, 12.5)

    def test_unparsable_dose_saves_zero(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, dose="ten")
        dispense.refresh_from_db()
        self.assertEqual(dispense.dose_value, 0)
        self.assertEqual(dispense.fill_amount, 0)
        self.assertEqual(dispense.fill_display, "")

    def test_sig_generated(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, amount_each_time=2, quantity_unit="pen", frequency="biweekly")
        self.assertEqual(dispense.sig, "2 pens every 2 weeks")

    def test_instructions_with_additional(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, additional_instructions="subcutaneously in the abdomen")
        self.assertEqual(dispense.instructions, "1 syringe weekly subcutaneously in the abdomen")

    def test_instructions_default(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        dispense.sig = ""
        self.assertEqual(dispense.instructions, "Take as directed.")

    def test_dispensed_quantity_text(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, quantity=3)
        self.assertEqual(dispense.dispensed_quantity_text, "3 syringes")
        dispense.quantity = 1
        dispense.quantity_unit = "pen"
        self.assertEqual(dispense.dispensed_quantity_text, "1 pen")

    def test_quantity_unit_from_string(self):
        self.assertEqual(QuantityUnit.from_string("Vials"), QuantityUnit.VIAL)
        self.assertEqual(QuantityUnit.from_string(" tablet "), QuantityUnit.TABLET)
        self.assertEqual(QuantityUnit.from_string(None), QuantityUnit.SYRINGE)

    def test_display_name(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        self.assertEqual(dispense.display_name, "Tirzepatide 10mg")

    def test_fill_amount_injectable(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        self.assertAlmostEqual(dispense.fill_amount, 0.2)
        self.assertEqual(dispense.fill_display, "0.20 mL (20U)")

    def test_fill_amount_not_computed_for_non_injectable(self):
        tablets = MedicationDefinition.objects.create(name="Phentermine", concentration1=37.5, injectable=False)
        dispense = make_dispense(self.patient, tablets, self.provider, quantity=30, quantity_unit="tablet")
        self.assertIsNone(dispense.fill_amount)
        self.assertEqual(dispense.fill_display, "")

    def test_is_expired(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, expiration_date=timezone.localdate() - timedelta(days=1))
        self.assertTrue(dispense.is_expired)
        dispense.expiration_date = None
        self.assertFalse(dispense.is_expired)

    def test_schedule_state(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        self.assertEqual(dispense.schedule_state, ScheduleState.UNSCHEDULED)
        dispense.next_dose_due = TODAY
        self.assertEqual(dispense.schedule_state, ScheduleState.SCHEDULED)

    def test_concentration_info(self):
        self.assertEqual(self.medication.concentration_info, "Tirzepatide 50.0mg, Pyridoxine 2.5mg")
        self.medication.concentration2 = 0
        self.assertEqual(self.medication.concentration_info, "Tirzepatide 50.0mg")


class DoseCalculatorTest(TestCase):
    def test_parse_dose(self):
        self.assertEqual(parse_dose("10"), 10.0)
        self.assertEqual(parse_dose(" 2.5 "), 2.5)
        self.assertEqual(parse_dose("10mg"), 0.0)
        self.assertEqual(parse_dose(""), 0.0)
        self.assertEqual(parse_dose(None), 0.0)
        self.assertEqual(parse_dose("-5"), 0.0)
        self.assertEqual(parse_dose("nan"), 0.0)
        self.assertEqual(parse_dose("inf"), 0.0)

    def test_fill_amount_mg(self):
        self.assertAlmostEqual(compute_fill_amount(10, "mg", 50), 0.2)

    def test_fill_amount_mcg(self):
        self.assertAlmostEqual(compute_fill_amount(500, "mcg", 50), 0.01)

    def test_fill_amount_units(self):
        self.assertAlmostEqual(compute_fill_amount(20, "units", 50), 0.2)

    def test_fill_amount_ml(self):
        self.assertAlmostEqual(compute_fill_amount(0.5, "ml", 50), 0.5)

    def test_fill_amount_zero_dose(self):
        for unit in ("mg", "mcg", "ml", "units"):
            self.assertEqual(compute_fill_amount(0, unit, 50), 0)

    def test_fill_amount_zero_or_missing_concentration(self):
        for unit in ("mg", "mcg", "ml", "units"):
            self.assertEqual(compute_fill_amount(10, unit, 0), 0)
            self.assertEqual(compute_fill_amount(10, unit, None), 0)

    def test_fill_amount_monotonic(self):
        doses = [0, 0.5, 1, 2.5, 10, 20, 100]
        concentrations = [0.5, 1, 2.5, 10, 50, 200]
        for unit in ("mg", "mcg", "ml", "units"):
            for concentration in concentrations:
                fills = [compute_fill_amount(dose, unit, concentration) for dose in doses]
                self.assertEqual(fills, sorted(fills))
            for dose in doses:
                fills = [compute_fill_amount(dose, unit, concentration) for concentration in concentrations]
                self.assertEqual(fills, sorted(fills, reverse=True))

    def test_fill_display(self):
        fill = compute_fill_amount(parse_dose("10"), "mg", 50)
        self.assertEqual(format_fill_display(fill), "0.20 mL (20U)")
        self.assertEqual(fill_units(0.35), "35")

    def test_fill_display_suppressed_at_zero(self):
        self.assertEqual(format_fill_display(0), "")
        self.assertEqual(format_fill_display(None), "")

    def test_fill_display_suppressed_when_rounding_to_zero(self):
        self.assertEqual(format_fill_display(0.004), "")
        self.assertEqual(format_fill_display(0.0049), "")
        self.assertEqual(format_fill_display(compute_fill_amount(0.1, "mg", 50)), "")
        self.assertEqual(format_fill_display(0.01), "0.01 mL (1U)")


class NextDoseComputationTest(TestCase):
    def test_intervals(self):
        start = date(2025, 1, 6)
        self.assertEqual(compute_next_dose_due(start, "daily"), date(2025, 1, 7))
        self.assertEqual(compute_next_dose_due(start, "weekly"), date(2025, 1, 13))
        self.assertEqual(compute_next_dose_due(start, "biweekly"), date(2025, 1, 20))
        self.assertEqual(compute_next_dose_due(start, "monthly"), date(2025, 2, 6))
        self.assertEqual(compute_next_dose_due(start, DosingFrequency.WEEKLY), date(2025, 1, 13))

    def test_custom_has_no_interval(self):
        self.assertIsNone(compute_next_dose_due(date(2025, 1, 6), "custom"))
        self.assertIsNone(compute_next_dose_due(date(2025, 1, 6), DosingFrequency.CUSTOM))

    def test_monthly_clamps_to_month_end(self):
        self.assertEqual(compute_next_dose_due(date(2025, 1, 31), "monthly"), date(2025, 2, 28))
        self.assertEqual(compute_next_dose_due(date(2024, 1, 31), "monthly"), date(2024, 2, 29))
        self.assertEqual(compute_next_dose_due(date(2025, 3, 31), "monthly"), date(2025, 4, 30))

    def test_seven_weekly_steps_equal_49_days(self):
        for start in (date(2025, 1, 1), date(2024, 2, 20), date(2025, 12, 28)):
            current = start
            for _ in range(7):
                current = compute_next_dose_due(current, "weekly")
            self.assertEqual(current, start + timedelta(days=49))

    def test_datetime_reference(self):
        start = datetime(2025, 1, 31, 9, 30)
        self.assertEqual(compute_next_dose_due(start, "monthly"), datetime(2025, 2, 28, 9, 30))


class NextDoseSchedulerTest(TestCase):
    def setUp(self):
        self.patient, self.provider, self.medication = make_fixtures()
        self.dispense = make_dispense(self.patient, self.medication, self.provider)
        self.scheduler = NextDoseScheduler(clock=lambda: TODAY)

    def test_print_update_schedules_from_today(self):
        result = self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(result.status, SCHEDULED)
        self.assertTrue(result.ok)
        self.assertIsNone(result.previous_due)
        self.assertEqual(result.next_dose_due, TODAY + timedelta(days=7))
        self.assertEqual(self.dispense.next_dose_due, TODAY + timedelta(days=7))

    def test_reference_is_not_dispense_date(self):
        self.scheduler.update_next_dose(self.dispense)
        self.assertNotEqual(self.dispense.next_dose_due, self.dispense.dispense_date + timedelta(days=7))

    def test_update_is_persisted_once(self):
        self.scheduler.apply_print_update(self.dispense)
        stored = DispensedMedication.objects.get(pk=self.dispense.pk)
        self.assertEqual(stored.next_dose_due, compute_next_dose_due(TODAY, "weekly"))
        stored.refresh_from_db()
        self.assertEqual(stored.next_dose_due, compute_next_dose_due(TODAY, "weekly"))

    def test_repeated_update_uses_invocation_date(self):
        first = self.scheduler.apply_print_update(self.dispense)
        second = self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(first.next_dose_due, second.next_dose_due)
        self.assertEqual(second.previous_due, first.next_dose_due)
        later = self.scheduler.apply_print_update(self.dispense, today=TODAY + timedelta(days=2))
        self.assertEqual(later.next_dose_due, TODAY + timedelta(days=9))

    def test_monthly_update(self):
        self.dispense.frequency = "monthly"
        self.dispense.save()
        result = self.scheduler.update_next_dose(self.dispense, today=date(2025, 1, 31))
        self.assertEqual(result.next_dose_due, date(2025, 2, 28))

    def test_custom_frequency_is_noop(self):
        self.dispense.frequency = "custom"
        self.dispense.save()
        result = self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(result.status, NOOP)
        self.assertTrue(result.ok)
        self.dispense.refresh_from_db()
        self.assertIsNone(self.dispense.next_dose_due)

    def test_failed_save_rolls_back(self):
        self.scheduler.update_next_dose(self.dispense, today=TODAY - timedelta(days=7))
        saved_due = self.dispense.next_dose_due
        with mock.patch.object(DispensedMedication, 'save', side_effect=DatabaseError("disk full")):
            result = self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(result.status, FAILED)
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, StoreError)
        self.assertEqual(self.dispense.next_dose_due, saved_due)
        self.dispense.refresh_from_db()
        self.assertEqual(self.dispense.next_dose_due, saved_due)

    def test_manual_next_dose_only_for_custom(self):
        with self.assertRaises(SchedulerError):
            self.scheduler.set_manual_next_dose(self.dispense, date(2025, 11, 1))
        self.dispense.frequency = "custom"
        self.dispense.save()
        result = self.scheduler.set_manual_next_dose(self.dispense, date(2025, 11, 1))
        self.assertEqual(result.status, SCHEDULED)
        self.dispense.refresh_from_db()
        self.assertEqual(self.dispense.next_dose_due, date(2025, 11, 1))

    def test_listeners_called_after_commit(self):
        calls = []
        listener = self.scheduler.subscribe(lambda dispense, result: calls.append((dispense.pk, result.status)))
        self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(calls, [(self.dispense.pk, SCHEDULED)])
        self.scheduler.unsubscribe(listener)
        self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(len(calls), 1)

    def test_listeners_not_called_on_noop_or_failure(self):
        calls = []
        self.scheduler.subscribe(lambda dispense, result: calls.append(result))
        with mock.patch.object(DispensedMedication, 'save', side_effect=DatabaseError("locked")):
            self.scheduler.apply_print_update(self.dispense)
        self.dispense.frequency = "custom"
        self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(calls, [])

    def test_failing_listener_does_not_fail_update(self):
        calls = []

        def broken(dispense, result):
            raise RuntimeError("dashboard refresh failed")

        self.scheduler.subscribe(broken)
        self.scheduler.subscribe(lambda dispense, result: calls.append(result.status))
        result = self.scheduler.apply_print_update(self.dispense)
        self.assertEqual(result.status, SCHEDULED)
        self.assertEqual(calls, [SCHEDULED])
        self.dispense.refresh_from_db()
        self.assertEqual(self.dispense.next_dose_due, TODAY + timedelta(days=7))

    def test_result_to_dict(self):
        result = ScheduleResult(status=SCHEDULED, previous_due=None, next_dose_due=date(2025, 10, 21))
        self.assertEqual(result.to_dict(), {"status": "scheduled", "previous_due": None, "next_dose_due": "2025-10-21"})


class FakeDispenses:
    def __init__(self, items):
        self.items = items

    def all(self):
        return list(self.items)


def fake_patient(pk, first_name, last_name, dues=(), is_active=True, inactive_dues=()):
    dispenses = [SimpleNamespace(is_active=True, next_dose_due=due) for due in dues]
    dispenses += [SimpleNamespace(is_active=False, next_dose_due=due) for due in inactive_dues]
    return SimpleNamespace(
        id=pk,
        first_name=first_name,
        last_name=last_name,
        display_name=f"{first_name} {last_name}",
        is_active=is_active,
        dispenses=FakeDispenses(dispenses),
    )


class DashboardGroupingTest(TestCase):
    def test_week_start(self):
        self.assertEqual(week_start(TODAY, 6), date(2025, 10, 12))
        self.assertEqual(week_start(TODAY, 0), date(2025, 10, 13))
        self.assertEqual(week_start(date(2025, 10, 12), 6), date(2025, 10, 12))

    def test_kratzer_scenario(self):
        patient = fake_patient(1, "Brittany", "Kratzer", dues=[TODAY])
        sunday = group_patients_by_week([patient], first_weekday=6)
        self.assertEqual(sunday.buckets[0].week_start, date(2025, 10, 12))
        monday = group_patients_by_week([patient], first_weekday=0)
        self.assertEqual(monday.buckets[0].week_start, date(2025, 10, 13))

    def test_earliest_due_ignores_inactive_medications(self):
        patient = fake_patient(1, "A", "B", dues=[TODAY + timedelta(days=5), None], inactive_dues=[TODAY])
        self.assertEqual(earliest_due(patient), TODAY + timedelta(days=5))
        self.assertIsNone(earliest_due(fake_patient(2, "C", "D", inactive_dues=[TODAY])))

    def test_every_active_patient_appears_once(self):
        patients = [
            fake_patient(1, "Ann", "Adams", dues=[TODAY]),
            fake_patient(2, "Ben", "Brown", dues=[TODAY + timedelta(days=7), TODAY + timedelta(days=1)]),
            fake_patient(3, "Cal", "Cole"),
            fake_patient(4, "Dee", "Dunn", inactive_dues=[TODAY]),
            fake_patient(5, "Eve", "Ezra", dues=[TODAY], is_active=False),
            fake_patient(6, "Fay", "Ford", is_active=False),
        ]
        grouping = group_patients_by_week(patients, first_weekday=6)
        scheduled_ids = [p.id for bucket in grouping.buckets for p in bucket.patients]
        unscheduled_ids = [p.id for p in grouping.unscheduled]
        self.assertEqual(sorted(scheduled_ids), [1, 2])
        self.assertEqual(sorted(unscheduled_ids), [3, 4])
        self.assertEqual(len(scheduled_ids + unscheduled_ids), len(set(scheduled_ids + unscheduled_ids)))

    def test_patient_order_within_bucket(self):
        patients = [
            fake_patient(1, "Zed", "Young", dues=[TODAY + timedelta(days=2)]),
            fake_patient(2, "Amy", "Young", dues=[TODAY]),
            fake_patient(3, "Bob", "Allen", dues=[TODAY]),
            fake_patient(4, "Al", "", dues=[TODAY]),
        ]
        grouping = group_patients_by_week(patients, first_weekday=6)
        self.assertEqual(len(grouping.buckets), 1)
        self.assertEqual([p.id for p in grouping.buckets[0].patients], [4, 3, 2, 1])
        descending = group_patients_by_week(patients, first_weekday=6, patient_order="descending")
        self.assertEqual([p.id for p in descending.buckets[0].patients], [1, 4, 3, 2])

    def test_bucket_order(self):
        patients = [
            fake_patient(1, "A", "A", dues=[TODAY + timedelta(days=14)]),
            fake_patient(2, "B", "B", dues=[TODAY]),
            fake_patient(3, "C", "C", dues=[TODAY + timedelta(days=7)]),
        ]
        ascending = group_patients_by_week(patients, first_weekday=6)
        self.assertEqual(
            [bucket.week_start for bucket in ascending.buckets],
            [date(2025, 10, 12), date(2025, 10, 19), date(2025, 10, 26)]
        )
        descending = group_patients_by_week(patients, first_weekday=6, week_order="descending")
        self.assertEqual(
            [bucket.week_start for bucket in descending.buckets],
            [date(2025, 10, 26), date(2025, 10, 19), date(2025, 10, 12)]
        )

    @override_settings(DISPENSARY={'FIRST_WEEKDAY': 0, 'WEEK_ORDER': 'descending', 'PATIENT_ORDER': 'ascending'})
    def test_settings_defaults(self):
        patients = [
            fake_patient(1, "A", "A", dues=[TODAY]),
            fake_patient(2, "B", "B", dues=[TODAY + timedelta(days=7)]),
        ]
        grouping = group_patients_by_week(patients)
        self.assertEqual([bucket.week_start for bucket in grouping.buckets], [date(2025, 10, 20), date(2025, 10, 13)])

    def test_unscheduled_sorted_by_name(self):
        patients = [
            fake_patient(1, "Zoe", "Baker"),
            fake_patient(2, "Adam", "Baker"),
            fake_patient(3, "Carl", "Abbott"),
        ]
        grouping = group_patients_by_week(patients)
        self.assertEqual([p.id for p in grouping.unscheduled], [3, 2, 1])
        self.assertEqual(grouping.buckets, [])

    def test_week_overflow_falls_back_to_unscheduled(self):
        # date.min is a Monday, so a Sunday-based week would start before year 1
        patients = [fake_patient(1, "Old", "Record", dues=[date.min]), fake_patient(2, "New", "Record", dues=[TODAY])]
        grouping = group_patients_by_week(patients, first_weekday=6)
        self.assertEqual([p.id for p in grouping.unscheduled], [1])
        self.assertEqual([p.id for p in grouping.buckets[0].patients], [2])

    def test_to_dict(self):
        grouping = group_patients_by_week([fake_patient(1, "Brittany", "Kratzer", dues=[TODAY])], first_weekday=6)
        data = grouping.to_dict()
        self.assertEqual(data["weeks"][0]["week_start"], "2025-10-12")
        self.assertEqual(data["weeks"][0]["patients"][0]["next_dose_due"], "2025-10-14")
        self.assertEqual(data["unscheduled"], [])


class RecordingPrinter(LabelPrinter):
    content_type = 'text/plain'
    extension = 'txt'

    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def connect(self):
        self.events.append('connect')

    def disconnect(self):
        self.events.append('disconnect')

    def render(self, labels):
        self.events.append(('render', len(labels)))
        if self.fail:
            raise RuntimeError("printer offline")
        return b"label"


class LabelTest(TestCase):
    def setUp(self):
        self.patient, self.provider, self.medication = make_fixtures()
        self.dispense = make_dispense(self.patient, self.medication, self.provider, expiration_date=date(2026, 4, 1))
        self.scheduler = NextDoseScheduler(clock=lambda: TODAY)

    def test_build_label_data_injectable(self):
        label = build_label_data(self.dispense)
        self.assertEqual(label.patient_name, "Kratzer, Brittany")
        self.assertEqual(label.title, "Tirzepatide 10mg")
        self.assertEqual(label.secondary_ingredient, "Pyridoxine 2.5mg")
        self.assertAlmostEqual(label.fill_amount, 0.2)
        self.assertEqual(label.fill_display, "0.20 mL (20U)")
        self.assertEqual(label.pharmacy_text, "Empower 0.20 mL (20U)")
        self.assertEqual(label.dispensed_quantity, "4 syringes")
        self.assertEqual(label.instructions, "1 syringe weekly")
        self.assertEqual(label.prescriber_name, "Jane Smith, MD")
        self.assertEqual(label.lot_number, "LOT-001")
        self.assertEqual(label.to_dict()["expiration_date"], "2026-04-01")

    def test_build_label_data_non_injectable(self):
        tablets = MedicationDefinition.objects.create(name="Phentermine", concentration1=37.5, injectable=False, pharmacy="Local")
        dispense = make_dispense(self.patient, tablets, self.provider, dose="37.5", quantity=30, quantity_unit="tablet", frequency="daily")
        label = build_label_data(dispense)
        self.assertIsNone(label.fill_amount)
        self.assertEqual(label.fill_display, "")
        self.assertEqual(label.pharmacy_text, "Local")
        self.assertEqual(label.dispensed_quantity, "30 tablets")

    @override_settings(DISPENSARY={'PRACTICE_INFO': 'Family Practice, 1 Main St'})
    def test_practice_info_from_settings(self):
        self.assertEqual(build_label_data(self.dispense).practice_info, "Family Practice, 1 Main St")

    def test_plain_text_printer(self):
        document = PlainTextLabelPrinter().render([build_label_data(self.dispense)]).decode('utf-8')
        self.assertIn("Kratzer, Brittany", document)
        self.assertIn("Disp: 4 syringes", document)
        self.assertIn("Sig: 1 syringe weekly", document)
        self.assertIn("Prescriber: Jane Smith, MD", document)
        self.assertIn("Exp: 04/01/2026", document)
        self.assertIn("Empower 0.20 mL (20U)", document)

    def test_print_and_update(self):
        printer = RecordingPrinter()
        outcome = PrintService(printer=printer, scheduler=self.scheduler).print_and_update(self.dispense)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.document, b"label")
        self.assertEqual(printer.events, ['connect', ('render', 1), 'disconnect'])
        self.dispense.refresh_from_db()
        self.assertEqual(self.dispense.next_dose_due, TODAY + timedelta(days=7))

    def test_reprint_does_not_schedule(self):
        document = PrintService(printer=PlainTextLabelPrinter(), scheduler=self.scheduler).reprint(self.dispense)
        self.assertIn(b"Tirzepatide 10mg", document)
        self.dispense.refresh_from_db()
        self.assertIsNone(self.dispense.next_dose_due)

    def test_render_failure_leaves_schedule_untouched(self):
        printer = RecordingPrinter(fail=True)
        service = PrintService(printer=printer, scheduler=self.scheduler)
        with self.assertRaises(RuntimeError):
            service.print_and_update(self.dispense)
        self.assertEqual(printer.events[-1], 'disconnect')
        self.dispense.refresh_from_db()
        self.assertIsNone(self.dispense.next_dose_due)

    def test_print_batch(self):
        other = make_dispense(self.patient, self.medication, self.provider, frequency="daily")
        outcome = PrintService(printer=PlainTextLabelPrinter(), scheduler=self.scheduler).print_batch([self.dispense, other])
        self.assertEqual(len(outcome.schedules), 2)
        self.assertIn(b"\f", outcome.document)
        other.refresh_from_db()
        self.assertEqual(other.next_dose_due, TODAY + timedelta(days=1))


class ServicesTest(TestCase):
    def setUp(self):
        self.patient = Patient.objects.create(first_name="Brittany", last_name="Kratzer")
        self.data = {
            "medication_name": "Tirzepatide",
            "ingredient1": "Tirzepatide",
            "concentration1": 50.0,
            "pharmacy": "Empower",
            "injectable": True,
            "prescriber_first_name": "Jane",
            "prescriber_last_name": "Smith",
            "prescriber_degree": "MD",
            "dose": "10",
            "dose_unit": "mg",
            "quantity": 4,
            "quantity_unit": "syringe",
            "frequency": "weekly",
            "amount_each_time": 1,
            "dispense_date": TODAY,
        }

    def test_create_patient_trims_names(self):
        patient = create_patient("  Ann ", " Lee ")
        self.assertEqual(patient.first_name, "Ann")
        self.assertEqual(patient.last_name, "Lee")

    def test_create_patient_requires_names(self):
        with self.assertRaises(ValidationError):
            create_patient("  ", "Lee")
        self.assertEqual(Patient.objects.filter(last_name="Lee").count(), 0)

    def test_find_or_create_provider_reuses_by_name(self):
        first = find_or_create_provider("Jane", "Smith")
        second = find_or_create_provider(" Jane ", "Smith", "PA")
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Provider.objects.count(), 1)
        self.assertEqual(second.degree, "PA")

    def test_find_or_create_medication_rejects_negative_concentration(self):
        with self.assertRaises(ValidationError):
            find_or_create_medication("Semaglutide", concentration1=-1)

    def test_record_dispense(self):
        dispense = record_dispense(self.patient, self.data)
        self.assertEqual(dispense.patient, self.patient)
        self.assertEqual(dispense.medication.name, "Tirzepatide")
        self.assertEqual(dispense.prescriber.display_name, "Jane Smith, MD")
        self.assertEqual(dispense.dose_value, 10.0)
        self.assertIsNone(dispense.next_dose_due)

    def test_record_dispense_with_initial_schedule(self):
        dispense = record_dispense(self.patient, self.data, schedule=True)
        self.assertEqual(dispense.next_dose_due, timezone.localdate() + timedelta(days=7))

    def test_record_dispense_initial_schedule_failure(self):
        with fail_next_dose_save():
            with self.assertRaises(StoreError):
                record_dispense(self.patient, self.data, schedule=True)
        self.assertEqual(DispensedMedication.objects.count(), 0)

    def test_template_shared_across_dispenses(self):
        record_dispense(self.patient, self.data)
        changed = dict(self.data, concentration1=25.0, ingredient2="Niacinamide", concentration2=1.0)
        second = record_dispense(self.patient, changed)
        self.assertEqual(MedicationDefinition.objects.filter(name="Tirzepatide").count(), 1)
        template = MedicationDefinition.objects.get(name="Tirzepatide")
        self.assertEqual(template.concentration1, 25.0)
        self.assertEqual(template.ingredient2, "Niacinamide")
        self.assertEqual(DispensedMedication.objects.count(), 2)
        self.assertAlmostEqual(second.fill_amount, 0.4)
        self.assertEqual(Provider.objects.count(), 1)

    def test_update_dispense(self):
        dispense = record_dispense(self.patient, self.data)
        update_dispense(dispense, {"dose": "15", "amount_each_time": 2, "frequency": "daily"})
        dispense.refresh_from_db()
        self.assertEqual(dispense.dose_value, 15.0)
        self.assertEqual(dispense.sig, "2 syringes daily")

    def test_update_dispense_changes_prescriber(self):
        dispense = record_dispense(self.patient, self.data)
        update_dispense(dispense, {"prescriber_first_name": "Tom", "prescriber_last_name": "Ray"})
        dispense.refresh_from_db()
        self.assertEqual(dispense.prescriber.display_name, "Tom Ray")
        self.assertEqual(Provider.objects.count(), 2)

    def test_update_dispense_store_failure(self):
        dispense = record_dispense(self.patient, self.data)
        with mock.patch.object(Model, 'save_base', side_effect=DatabaseError("disk full")):
            with self.assertRaises(StoreError):
                update_dispense(dispense, {"dose": "15", "frequency": "daily"})
        self.assertEqual(dispense.dose, "10")
        self.assertEqual(dispense.dose_value, 10.0)
        self.assertEqual(dispense.frequency, "weekly")
        self.assertEqual(dispense.sig, "1 syringe weekly")
        self.assertEqual(dispense.fill_display, "0.20 mL (20U)")
        dispense.refresh_from_db()
        self.assertEqual(dispense.dose_value, 10.0)


@override_settings(DISPENSARY={})
class QRCodeTest(TestCase):
    def test_generate_qr_png(self):
        self.assertTrue(generate_qr_png("https://example.com/tirzepatide").startswith(PNG_SIGNATURE))

    def test_new_template_gets_qr_image(self):
        medication = find_or_create_medication("Semaglutide", qr_url="https://example.com/semaglutide")
        self.assertTrue(bytes(medication.qr_image).startswith(PNG_SIGNATURE))
        medication.refresh_from_db()
        self.assertTrue(bytes(medication.qr_image).startswith(PNG_SIGNATURE))

    def test_changed_url_regenerates_image(self):
        first = bytes(find_or_create_medication("Semaglutide", qr_url="https://example.com/a").qr_image)
        medication = find_or_create_medication("Semaglutide", qr_url="https://example.com/a-much-longer-address/semaglutide")
        self.assertNotEqual(bytes(medication.qr_image), first)

    def test_no_url_clears_image(self):
        medication = find_or_create_medication("Semaglutide", qr_url="https://example.com/a")
        medication.qr_url = ""
        update_medication_qr(medication)
        medication.refresh_from_db()
        self.assertFalse(medication.qr_image)

    def test_default_url_from_settings(self):
        with override_settings(DISPENSARY={'DEFAULT_QR_URL': 'https://example.com/medications'}):
            medication = find_or_create_medication("Semaglutide")
        self.assertTrue(bytes(medication.qr_image).startswith(PNG_SIGNATURE))


class DispenseCheckerTest(TestCase):
    def setUp(self):
        self.patient, self.provider, self.medication = make_fixtures()
        self.dispense = make_dispense(self.patient, self.medication, self.provider)

    def test_expiration_before_dispense(self):
        warning = DispenseChecker.check_expiration(date(2025, 10, 1), date(2025, 9, 1))
        self.assertEqual(warning.warning_type, "expiration_before_dispense")
        self.assertEqual(warning.severity, "warning")

    def test_expired_lot(self):
        yesterday = timezone.localdate() - timedelta(days=1)
        warning = DispenseChecker.check_expiration(yesterday - timedelta(days=10), yesterday)
        self.assertEqual(warning.warning_type, "expired_lot")
        self.assertEqual(warning.severity, "warning")

    def test_expiration_ok(self):
        self.assertIsNone(DispenseChecker.check_expiration(TODAY, timezone.localdate() + timedelta(days=90)))
        self.assertIsNone(DispenseChecker.check_expiration(TODAY, None))

    def test_template_change(self):
        warning = DispenseChecker.check_template_change("Tirzepatide", {"concentration1": 25.0})
        self.assertEqual(warning.warning_type, "template_will_update")
        self.assertIn("concentration1", warning.message)
        self.assertIsNone(DispenseChecker.check_template_change("Tirzepatide", {"concentration1": 50.0}))
        self.assertIsNone(DispenseChecker.check_template_change("Unknown", {"concentration1": 1.0}))

    def test_duplicate_dispense_within_24h(self):
        warning = DispenseChecker.check_duplicate_dispense(self.patient, "Tirzepatide")
        self.assertEqual(warning.warning_type, "potential_duplicate_dispense")
        self.assertEqual(warning.existing_record["count"], 1)

    def test_duplicate_dispense_outside_24h(self):
        DispensedMedication.objects.filter(pk=self.dispense.pk).update(created_at=timezone.now() - timedelta(days=2))
        self.assertIsNone(DispenseChecker.check_duplicate_dispense(self.patient, "Tirzepatide"))

    def test_validate_dispense(self):
        result = DispenseChecker.validate_dispense(self.patient, {
            "medication_name": "Semaglutide",
            "dispense_date": TODAY,
            "expiration_date": TODAY - timedelta(days=1),
        })
        self.assertTrue(result["valid"])
        self.assertEqual(result["errors"], [])
        self.assertEqual([w["type"] for w in result["warnings"]], ["expiration_before_dispense"])
        result = DispenseChecker.validate_dispense(self.patient, {"medication_name": "Tirzepatide"})
        self.assertTrue(result["valid"])
        self.assertEqual(len(result["warnings"]), 1)

    def test_warning_to_dict(self):
        warning = DispenseWarning("expired_lot", "warning", "Lot expired")
        self.assertEqual(warning.to_dict(), {"type": "expired_lot", "severity": "warning", "message": "Lot expired"})


class ExportTest(TestCase):
    def setUp(self):
        self.patient, self.provider, self.medication = make_fixtures()
        self.dispense1 = make_dispense(self.patient, self.medication, self.provider, dispense_date=date(2025, 10, 1))
        tablets = MedicationDefinition.objects.create(name="Phentermine", concentration1=37.5, injectable=False)
        other = Provider.objects.create(first_name="Tom", last_name="Ray")
        self.dispense2 = make_dispense(self.patient, tablets, other, quantity=30, quantity_unit="tablet", dispense_date=date(2025, 10, 10))
        NextDoseScheduler(clock=lambda: TODAY).update_next_dose(self.dispense1)

    def test_get_dispenses_for_export_all(self):
        self.assertEqual(len(get_dispenses_for_export()), 2)

    def test_get_dispenses_for_export_with_date_filter(self):
        dispenses = get_dispenses_for_export(start_date=date(2025, 10, 5), end_date=date(2025, 10, 31))
        self.assertEqual([d.pk for d in dispenses], [self.dispense2.pk])

    def test_get_dispenses_for_export_with_prescriber_filter(self):
        self.assertEqual(len(get_dispenses_for_export(prescriber="smith")), 1)

    def test_get_dispenses_for_export_with_medication_filter(self):
        self.assertEqual(len(get_dispenses_for_export(medication="phentermine")), 1)

    def test_export_to_csv(self):
        csv_content = export_to_csv()
        self.assertIn("Dispense ID", csv_content)
        self.assertIn("Kratzer", csv_content)
        self.assertIn("Tirzepatide", csv_content)
        self.assertIn("0.20", csv_content)
        self.assertIn("2025-10-21", csv_content)

    def test_export_to_excel(self):
        excel_content = export_to_excel()
        self.assertIsInstance(excel_content, bytes)
        self.assertGreater(len(excel_content), 0)

    def test_export_stats(self):
        stats = get_export_stats(get_dispenses_for_export())
        self.assertEqual(stats["total_dispenses"], 2)
        self.assertEqual(stats["scheduled"], 1)
        self.assertEqual(stats["active_patients"], 1)
        self.assertEqual(stats["medications"], ["Phentermine", "Tirzepatide"])

    def test_get_export_filename(self):
        filename = get_export_filename("csv", date(2025, 1, 1), date(2025, 1, 31))
        self.assertIn("20250101_to_20250131", filename)
        self.assertTrue(filename.endswith(".csv"))
        self.assertTrue(get_export_filename("xlsx").startswith("dispense_log_"))


class ViewsTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.patient, self.provider, self.medication = make_fixtures()
        self.dispense_payload = {
            "medication_name": "Tirzepatide",
            "concentration1": 50,
            "pharmacy": "Empower",
            "injectable": True,
            "prescriber_first_name": "Jane",
            "prescriber_last_name": "Smith",
            "dose": "10",
            "dose_unit": "mg",
            "quantity": 4,
            "quantity_unit": "syringe",
            "frequency": "weekly",
            "amount_each_time": 1,
            "dispense_date": "2025-10-14",
            "expiration_date": "2026-04-01",
            "lot_number": "LOT-9"
        }

    def post(self, url, data=None):
        return self.client.post(url, data=json.dumps(data or {}), content_type='application/json')

    def test_api_root(self):
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)

    def test_create_patient(self):
        response = self.post('/api/patients/', {"first_name": "Ann", "last_name": "Lee"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(json.loads(response.content)["display_name"], "Ann Lee")

    def test_create_patient_blank_name(self):
        response = self.post('/api/patients/', {"first_name": "  ", "last_name": "Lee"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("first_name", json.loads(response.content))

    def test_patient_not_found(self):
        response = self.client.get('/api/patients/9999')
        self.assertEqual(response.status_code, 404)

    def test_deactivate_patient(self):
        response = self.client.patch(
            f'/api/patients/{self.patient.id}',
            data=json.dumps({"is_active": False}),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 200)
        self.patient.refresh_from_db()
        self.assertFalse(self.patient.is_active)

    def test_record_dispense(self):
        response = self.post(f'/api/patients/{self.patient.id}/dispenses', self.dispense_payload)
        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertEqual(data["fill_display"], "0.20 mL (20U)")
        self.assertEqual(data["sig"], "1 syringe weekly")
        self.assertEqual(data["schedule_state"], "unscheduled")
        self.assertIsNone(data["next_dose_due"])
        self.assertEqual(MedicationDefinition.objects.count(), 1)

    def test_record_dispense_with_schedule(self):
        response = self.post(f'/api/patients/{self.patient.id}/dispenses', dict(self.dispense_payload, schedule=True))
        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertEqual(data["next_dose_due"], (timezone.localdate() + timedelta(days=7)).isoformat())

    def test_record_dispense_schedule_store_failure(self):
        with fail_next_dose_save():
            response = self.post(f'/api/patients/{self.patient.id}/dispenses', dict(self.dispense_payload, schedule=True))
        self.assertEqual(response.status_code, 503)
        self.assertEqual(DispensedMedication.objects.count(), 0)

    def test_record_dispense_invalid_quantity(self):
        response = self.post(f'/api/patients/{self.patient.id}/dispenses', dict(self.dispense_payload, quantity=0))
        self.assertEqual(response.status_code, 400)
        self.assertIn("quantity", json.loads(response.content))

    def test_validate_dispense_endpoint(self):
        response = self.post(
            f'/api/patients/{self.patient.id}/dispenses/validate',
            dict(self.dispense_payload, expiration_date="2025-01-01")
        )
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertTrue(data["valid"])
        self.assertIn("expiration_before_dispense", [w["type"] for w in data["warnings"]])

    def test_list_dispenses(self):
        make_dispense(self.patient, self.medication, self.provider)
        response = self.client.get(f'/api/patients/{self.patient.id}/dispenses')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(json.loads(response.content)), 1)

    def test_edit_dispense_rejects_next_dose(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.client.patch(
            f'/api/dispenses/{dispense.id}',
            data=json.dumps({"next_dose_due": "2025-12-01"}),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 400)

    def test_edit_dispense(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.client.patch(
            f'/api/dispenses/{dispense.id}',
            data=json.dumps({"dose": "20"}),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)["fill_display"], "0.40 mL (40U)")

    def test_label_endpoint(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.client.get(f'/api/dispenses/{dispense.id}/label')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)["patient_name"], "Kratzer, Brittany")

    def test_print_and_update(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.post(f'/api/dispenses/{dispense.id}/print')
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        expected = (timezone.localdate() + timedelta(days=7)).isoformat()
        self.assertEqual(data["schedule"]["next_dose_due"], expected)
        self.assertIn("Kratzer, Brittany", data["document"])
        dispense.refresh_from_db()
        self.assertEqual(dispense.next_dose_due.isoformat(), expected)

    def test_print_store_failure(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        with mock.patch.object(DispensedMedication, 'save', side_effect=DatabaseError("disk full")):
            response = self.post(f'/api/dispenses/{dispense.id}/print')
        self.assertEqual(response.status_code, 503)
        dispense.refresh_from_db()
        self.assertIsNone(dispense.next_dose_due)

    def test_print_render_failure(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        service = PrintService(printer=RecordingPrinter(fail=True))
        with mock.patch('dispensing.views.get_print_service', return_value=service):
            response = self.post(f'/api/dispenses/{dispense.id}/print')
        self.assertEqual(response.status_code, 500)
        dispense.refresh_from_db()
        self.assertIsNone(dispense.next_dose_due)

    def test_print_with_failing_listener(self):
        def broken(dispense, result):
            raise RuntimeError("dashboard refresh failed")

        default_scheduler.subscribe(broken)
        self.addCleanup(default_scheduler.unsubscribe, broken)
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.post(f'/api/dispenses/{dispense.id}/print')
        self.assertEqual(response.status_code, 200)
        dispense.refresh_from_db()
        self.assertEqual(dispense.next_dose_due, timezone.localdate() + timedelta(days=7))

    def test_reprint(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        response = self.post(f'/api/dispenses/{dispense.id}/reprint')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/plain')
        self.assertIn('attachment', response['Content-Disposition'])
        dispense.refresh_from_db()
        self.assertIsNone(dispense.next_dose_due)

    def test_update_next_dose(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, frequency="daily")
        response = self.post(f'/api/dispenses/{dispense.id}/update-next-dose')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)["status"], "scheduled")
        dispense.refresh_from_db()
        self.assertEqual(dispense.next_dose_due, timezone.localdate() + timedelta(days=1))

    def test_update_next_dose_custom_is_noop(self):
        dispense = make_dispense(self.patient, self.medication, self.provider, frequency="custom")
        response = self.post(f'/api/dispenses/{dispense.id}/update-next-dose')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)["status"], "noop")

    def test_manual_next_dose(self):
        weekly = make_dispense(self.patient, self.medication, self.provider)
        response = self.post(f'/api/dispenses/{weekly.id}/next-dose', {"next_dose_due": "2025-11-01"})
        self.assertEqual(response.status_code, 400)
        custom = make_dispense(self.patient, self.medication, self.provider, frequency="custom")
        response = self.post(f'/api/dispenses/{custom.id}/next-dose', {"next_dose_due": "2025-11-01"})
        self.assertEqual(response.status_code, 200)
        custom.refresh_from_db()
        self.assertEqual(custom.next_dose_due, date(2025, 11, 1))

    def test_dashboard(self):
        dispense = make_dispense(self.patient, self.medication, self.provider)
        NextDoseScheduler(clock=lambda: TODAY - timedelta(days=7)).update_next_dose(dispense)
        Patient.objects.create(first_name="Cal", last_name="Cole")
        Patient.objects.create(first_name="Old", last_name="Gone", is_active=False)
        response = self.client.get('/api/dashboard')
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(len(data["weeks"]), 1)
        self.assertEqual(data["weeks"][0]["patients"][0]["last_name"], "Kratzer")
        self.assertEqual([p["last_name"] for p in data["unscheduled"]], ["Cole"])

    def test_dashboard_invalid_order(self):
        response = self.client.get('/api/dashboard?week_order=sideways')
        self.assertEqual(response.status_code, 400)

    def test_medication_templates_find_or_create(self):
        response = self.post('/api/medications/', {"name": "Semaglutide", "concentration1": 2.5})
        self.assertEqual(response.status_code, 201)
        response = self.post('/api/medications/', {"name": "Semaglutide", "concentration1": 5})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(MedicationDefinition.objects.filter(name="Semaglutide").count(), 1)
        self.assertEqual(json.loads(response.content)["concentration1"], 5.0)

    def test_medication_qr(self):
        response = self.post('/api/medications/', {"name": "Semaglutide", "qr_url": "https://example.com/semaglutide"})
        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertTrue(data["has_qr_image"])
        response = self.client.get(f'/api/medications/{data["id"]}/qr')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'image/png')
        self.assertTrue(response.content.startswith(PNG_SIGNATURE))

    def test_medication_qr_missing(self):
        response = self.client.get(f'/api/medications/{self.medication.id}/qr')
        self.assertEqual(response.status_code, 404)

    def test_providers_find_or_create(self):
        response = self.post('/api/providers/', {"first_name": "Jane", "last_name": "Smith"})
        self.assertEqual(response.status_code, 200)
        response = self.post('/api/providers/', {"first_name": "Tom", "last_name": "Ray", "degree": "PA"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(json.loads(response.content)["display_name"], "Tom Ray, PA")

    def test_export_dispenses_csv(self):
        make_dispense(self.patient, self.medication, self.provider)
        response = self.client.get('/api/dispenses/export?format=csv')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn('attachment', response['Content-Disposition'])

    def test_export_dispenses_excel(self):
        make_dispense(self.patient, self.medication, self.provider)
        response = self.client.get('/api/dispenses/export?format=xlsx')
        self.assertEqual(response.status_code, 200)
        self.assertIn('spreadsheetml.sheet', response['Content-Type'])

    def test_export_dispenses_invalid_format(self):
        response = self.client.get('/api/dispenses/export?format=invalid')
        self.assertEqual(response.status_code, 400)

    def test_export_dispenses_invalid_date(self):
        response = self.client.get('/api/dispenses/export?format=csv&start_date=invalid')
        self.assertEqual(response.status_code, 400)

    def test_export_stats(self):
        make_dispense(self.patient, self.medication, self.provider)
        response = self.client.get('/api/dispenses/export/stats')
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data["total_dispenses"], 1)
        self.assertEqual(data["date_range"], "All time")
