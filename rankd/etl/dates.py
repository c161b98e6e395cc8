"""Resolve relative review dates ("2 weeks ago") against a capture timestamp."""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional, TypeVar, Union

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

DateLike = TypeVar("DateLike", date, datetime)

_UNITS = "second|minute|hour|day|week|month|year"
_COUNTED = re.compile(rf"^(\d+)\s+({_UNITS})s?\s+ago$")
_SINGLE = re.compile(rf"^(?:a|an)\s+({_UNITS})\s+ago$")


def resolve(text: Optional[str], anchor: DateLike) -> Optional[DateLike]:
    """Return ``anchor`` minus the quantity described by ``text``.

    ``anchor`` is the moment the text was captured, never the current time,
    so the result is reproducible. Month and year steps are calendar aware
    and clamp to the last valid day (31 March minus a month is the end of
    February). A plain ``date`` anchor is taken as midnight, so "5 hours
    ago" falls on the previous day. Anything unparseable or out of the
    representable range yields ``None``; a missing date is a normal outcome
    for callers.
    """
    if not text:
        return None

    normalized = text.strip().lower()
    match = _COUNTED.match(normalized)
    if match:
        amount = int(match.group(1))
        unit = match.group(2)
    else:
        match = _SINGLE.match(normalized)
        if not match:
            return None
        amount = 1
        unit = match.group(1)

    try:
        if isinstance(anchor, datetime):
            return anchor - _offset(amount, unit)
        return (datetime.combine(anchor, time.min) - _offset(amount, unit)).date()
    except (ValueError, OverflowError):
        logger.debug("Relative date %r is out of range for anchor %s", text, anchor)
        return None


def _offset(amount: int, unit: str) -> Union[relativedelta, timedelta]:
    if unit == "month":
        return relativedelta(months=amount)
    if unit == "year":
        return relativedelta(years=amount)
    if unit == "week":
        return timedelta(days=7 * amount)
    return timedelta(**{f"{unit}s": amount})
