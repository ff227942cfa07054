import logging
import math
from typing import Optional

logger = logging.getLogger('dispensing')

MCG_PER_MG = 1000
# U-100 insulin-style syringes: 100 units per mL
UNITS_PER_ML = 100


def parse_dose(text: Optional[str]) -> float:
    if text is None:
        return 0.0
    value = str(text).strip()
    if not value:
        return 0.0
    try:
        parsed = float(value)
    except ValueError:
        logger.debug(f"Dose text is not numeric, using 0: {value!r}")
        return 0.0
    if not math.isfinite(parsed) or parsed < 0:
        logger.debug(f"Dose value out of range, using 0: {value!r}")
        return 0.0
    return parsed


def compute_fill_amount(dose_value: float, dose_unit: Optional[str], concentration: Optional[float]) -> float:
    """Volume in mL drawn per administration.

    Concentration is mg per mL of the primary ingredient. A missing or zero
    concentration, or a zero dose, gives 0 rather than an error.
    """
    if not dose_value or dose_value <= 0:
        return 0.0
    if not concentration or concentration <= 0:
        return 0.0
    unit = (dose_unit or 'mg').lower()
    if unit == 'ml':
        return float(dose_value)
    if unit == 'units':
        return dose_value / UNITS_PER_ML
    if unit == 'mcg':
        return (dose_value / MCG_PER_MG) / concentration
    return dose_value / concentration


def fill_units(fill_amount: float) -> str:
    return f"{fill_amount * UNITS_PER_ML:.0f}"


def format_fill_display(fill_amount: Optional[float]) -> str:
    if not fill_amount or fill_amount <= 0:
        return ''
    volume = f"{fill_amount:.2f}"
    units = fill_units(fill_amount)
    # never print "0.00 mL" or "0U"
    if float(volume) <= 0 or float(units) <= 0:
        return ''
    return f"{volume} mL ({units}U)"
