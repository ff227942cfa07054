import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional, Dict, Any
from django.conf import settings

logger = logging.getLogger('dispensing')

ASCENDING = 'ascending'
DESCENDING = 'descending'
SUNDAY = 6


def _config(key, default):
    return getattr(settings, 'DISPENSARY', {}).get(key, default)


def earliest_due(patient) -> Optional[date]:
    dates = [
        dispense.next_dose_due for dispense in patient.dispenses.all()
        if dispense.is_active and dispense.next_dose_due is not None
    ]
    return min(dates) if dates else None


def week_start(day: date, first_weekday: int = SUNDAY) -> date:
    offset = (day.weekday() - first_weekday) % 7
    return day - timedelta(days=offset)


def _name_key(patient):
    return (patient.last_name or '', patient.first_name or '')


@dataclass
class WeekBucket:
    week_start: date
    patients: List[Any] = field(default_factory=list)


@dataclass
class WeeklyGrouping:
    buckets: List[WeekBucket] = field(default_factory=list)
    unscheduled: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weeks": [
                {
                    "week_start": bucket.week_start.isoformat(),
                    "patients": [_patient_summary(patient) for patient in bucket.patients],
                }
                for bucket in self.buckets
            ],
            "unscheduled": [_patient_summary(patient) for patient in self.unscheduled],
        }


def _patient_summary(patient) -> Dict[str, Any]:
    due = earliest_due(patient)
    return {
        "id": patient.id,
        "first_name": patient.first_name,
        "last_name": patient.last_name,
        "display_name": patient.display_name,
        "next_dose_due": due.isoformat() if due else None,
    }


def group_patients_by_week(
    patients: Iterable,
    first_weekday: Optional[int] = None,
    week_order: Optional[str] = None,
    patient_order: Optional[str] = None
) -> WeeklyGrouping:
    if first_weekday is None:
        first_weekday = _config('FIRST_WEEKDAY', SUNDAY)
    week_order = week_order or _config('WEEK_ORDER', ASCENDING)
    patient_order = patient_order or _config('PATIENT_ORDER', ASCENDING)

    buckets: Dict[date, List[Any]] = {}
    due_dates: Dict[int, date] = {}
    unscheduled = []

    for patient in patients:
        if not patient.is_active:
            continue
        due = earliest_due(patient)
        if due is None:
            unscheduled.append(patient)
            continue
        try:
            start = week_start(due, first_weekday)
        except (OverflowError, ValueError) as e:
            logger.warning(f"Could not compute week for patient ID: {patient.id}, due: {due}, error: {str(e)}")
            unscheduled.append(patient)
            continue
        due_dates[id(patient)] = due
        buckets.setdefault(start, []).append(patient)

    grouped = []
    for start, members in buckets.items():
        members.sort(key=_name_key)
        members.sort(key=lambda p: due_dates[id(p)], reverse=(patient_order == DESCENDING))
        grouped.append(WeekBucket(week_start=start, patients=members))
    grouped.sort(key=lambda bucket: bucket.week_start, reverse=(week_order == DESCENDING))

    unscheduled.sort(key=_name_key)
    logger.debug(f"Dashboard grouped {sum(len(b.patients) for b in grouped)} scheduled and {len(unscheduled)} unscheduled patients into {len(grouped)} weeks")
    return WeeklyGrouping(buckets=grouped, unscheduled=unscheduled)
