"""
Contract date utility functions
"""

import re
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

_DURATION_RE = re.compile(r"(\d+)\s*(year|month|week|day)s?", re.IGNORECASE)


def calculate_expiration_date(contract_duration: str, start: Optional[datetime] = None) -> Optional[datetime]:
    """
    Derive an expiration date from a free-text duration such as "2 years".

    Only the first "<number> <unit>" pair is used.

    Args:
        contract_duration: Duration text from the analysis
        start: Start date (defaults to now, UTC)

    Returns:
        Expiration date, or None if no duration could be read or the
        result is out of the representable date range
    """
    match = _DURATION_RE.search(contract_duration or "")
    if not match:
        return None
    amount = int(match.group(1))
    unit = match.group(2).lower() + "s"
    start = start or datetime.now(timezone.utc)
    try:
        return start + relativedelta(**{unit: amount})
    except (ValueError, OverflowError):
        # Past datetime.max
        return None
