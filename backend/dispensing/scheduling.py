"""
Next dose scheduling for dispensed medications.

A dispense is either unscheduled (no next dose date) or scheduled. Printing a
label with "print and update", or asking for "update next dose", moves the
next dose date forward from today by the dosing frequency. Custom
frequencies are never advanced automatically.
"""
import logging
import traceback
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Dict, Any
from dateutil.relativedelta import relativedelta
from django.db import DatabaseError, transaction
from django.utils import timezone
from .exceptions import SchedulerError, StoreError
from .models import DispensedMedication, DosingFrequency

logger = logging.getLogger('dispensing')

FREQUENCY_INTERVALS = {
    DosingFrequency.DAILY.value: relativedelta(days=1),
    DosingFrequency.WEEKLY.value: relativedelta(weeks=1),
    DosingFrequency.BIWEEKLY.value: relativedelta(weeks=2),
    # relativedelta clamps to the last day of shorter months (Jan 31 -> Feb 28/29)
    DosingFrequency.MONTHLY.value: relativedelta(months=1),
}

SCHEDULED = 'scheduled'
NOOP = 'noop'
FAILED = 'failed'


def compute_next_dose_due(current, frequency):
    """Return ``current`` advanced by one dosing interval, or None for custom frequencies."""
    interval = FREQUENCY_INTERVALS.get(str(frequency))
    if interval is None:
        return None
    return current + interval


@dataclass
class ScheduleResult:
    status: str
    previous_due: Optional[date] = None
    next_dose_due: Optional[date] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "previous_due": self.previous_due.isoformat() if self.previous_due else None,
            "next_dose_due": self.next_dose_due.isoformat() if self.next_dose_due else None,
        }
        if self.error is not None:
            result["error"] = str(self.error)
        return result


class NextDoseScheduler:

    def __init__(self, clock: Optional[Callable[[], date]] = None):
        self._clock = clock or timezone.localdate
        self._listeners: List[Callable[[DispensedMedication, ScheduleResult], None]] = []

    def subscribe(self, callback):
        if callback not in self._listeners:
            self._listeners.append(callback)
        return callback

    def unsubscribe(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def apply_print_update(self, dispense: DispensedMedication, today: Optional[date] = None) -> ScheduleResult:
        logger.info(f"Print and update requested - dispense ID: {dispense.pk}")
        return self._advance(dispense, today)

    def update_next_dose(self, dispense: DispensedMedication, today: Optional[date] = None) -> ScheduleResult:
        logger.info(f"Update next dose requested - dispense ID: {dispense.pk}")
        return self._advance(dispense, today)

    def set_manual_next_dose(self, dispense: DispensedMedication, due: date) -> ScheduleResult:
        if dispense.frequency != DosingFrequency.CUSTOM:
            raise SchedulerError(
                f"Next dose for a {dispense.frequency} dispense is computed automatically and cannot be set by hand"
            )
        return self._commit(dispense, due)

    def _advance(self, dispense, today):
        reference = today or self._clock()
        next_due = compute_next_dose_due(reference, dispense.frequency)
        if next_due is None:
            logger.info(f"No automatic schedule for custom frequency - dispense ID: {dispense.pk}")
            return ScheduleResult(
                status=NOOP,
                previous_due=dispense.next_dose_due,
                next_dose_due=dispense.next_dose_due,
            )
        return self._commit(dispense, next_due)

    def _commit(self, dispense, next_due):
        previous_due = dispense.next_dose_due
        try:
            with transaction.atomic():
                locked = DispensedMedication.objects.select_for_update().get(pk=dispense.pk)
                locked.next_dose_due = next_due
                locked.save(update_fields=['next_dose_due'])
        except DatabaseError as e:
            dispense.next_dose_due = previous_due
            logger.error(f"Failed to save next dose for dispense ID: {dispense.pk}, error: {str(e)}")
            return ScheduleResult(
                status=FAILED,
                previous_due=previous_due,
                next_dose_due=previous_due,
                error=StoreError(f"Could not save next dose: {str(e)}"),
            )
        dispense.next_dose_due = next_due
        logger.info(f"Next dose scheduled - dispense ID: {dispense.pk}, previous: {previous_due}, next: {next_due}")
        result = ScheduleResult(status=SCHEDULED, previous_due=previous_due, next_dose_due=next_due)
        # next_dose_due is already saved; listener errors are logged only
        for listener in list(self._listeners):
            try:
                listener(dispense, result)
            except Exception as e:
                logger.error(f"Next dose listener failed - dispense ID: {dispense.pk}, error: {str(e)}")
                logger.error(f"Traceback: {traceback.format_exc()}")
        return result


scheduler = NextDoseScheduler()


def apply_print_update(dispense: DispensedMedication, today: Optional[date] = None) -> ScheduleResult:
    return scheduler.apply_print_update(dispense, today)


def update_next_dose(dispense: DispensedMedication, today: Optional[date] = None) -> ScheduleResult:
    return scheduler.update_next_dose(dispense, today)
