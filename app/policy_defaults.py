from __future__ import annotations

import copy
from typing import Any, Dict

from positions import defined_positions


DEFAULT_POLICY_NAME = "Default Policy"
DEFAULT_DAILY_EVENT_LIMIT = 3
DEFAULT_BUSINESS_TIMEZONE = "UTC"


BASELINE_POLICY: Dict[str, Any] = {
    "name": DEFAULT_POLICY_NAME,
    "daily_event_limit": DEFAULT_DAILY_EVENT_LIMIT,
    # Calendar-day comparisons (double booking, daily cap) use this zone.
    "business_timezone": DEFAULT_BUSINESS_TIMEZONE,
    "positions": defined_positions(),
}


def build_default_policy() -> Dict[str, Any]:
    return copy.deepcopy(BASELINE_POLICY)
