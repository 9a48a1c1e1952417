"""TOIL accrual table for travel scenarios (employment contract section 6.6).

``calculate_toil_hours`` returns ``None`` whenever the inputs are not enough
to decide; callers must refuse to proceed on ``None`` rather than treat it
as zero.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from leave_tracker.common.constants import ToilScenario

_RETURN_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

# Return hour → hours awarded for an overnight trip ending on a working day.
_LATE_RETURN_HOURS = {19: 1, 20: 2, 21: 3}
_LATE_RETURN_FIRST_HOUR = 19
_LATE_RETURN_CAP_HOUR = 22
_HALF_DAY_HOURS = 4


@dataclass(frozen=True)
class ScenarioInfo:
    label: str
    description: str
    help_text: str
    contract_ref: str
    requires_return_date: bool = False
    requires_return_time: bool = False


SCENARIOS: dict[ToilScenario, ScenarioInfo] = {
    ToilScenario.local_show: ScenarioInfo(
        label="Local Show Watch",
        description="Show watch in home/local city",
        help_text="No TOIL allocated - voluntary attendance",
        contract_ref="Section 6.6(a)",
    ),
    ToilScenario.working_day_panel: ScenarioInfo(
        label="Working Day + Panel/Showcase",
        description="Travel for agent panel or showcase",
        help_text="Start at 1pm the following day",
        contract_ref="Section 6.6(b)",
    ),
    ToilScenario.overnight_day_off: ScenarioInfo(
        label="Overnight + Day Off Travel",
        description="Returning home on a scheduled day off",
        help_text="4 hours TOIL allocated",
        contract_ref="Section 6.6(c)",
        requires_return_date=True,
    ),
    ToilScenario.overnight_working_day: ScenarioInfo(
        label="Overnight + Working Day Travel",
        description="Returning home on a working day",
        help_text="TOIL based on arrival time",
        contract_ref="Section 6.6(d)",
        requires_return_date=True,
        requires_return_time=True,
    ),
}


def parse_return_hour(return_time: Optional[str]) -> Optional[int]:
    """Hour component of a 24h ``HH:MM`` string, or None if malformed."""
    if not return_time:
        return None
    match = _RETURN_TIME_RE.match(return_time.strip())
    if match is None:
        return None
    return int(match.group(1))


def calculate_toil_hours(
    scenario: Union[ToilScenario, str, None],
    travel_date: Optional[date],
    return_date: Optional[date] = None,
    return_time: Optional[str] = None,
) -> Optional[int]:
    """Hours of TOIL a trip earns, or ``None`` when it cannot be decided."""
    if not scenario or travel_date is None:
        return None
    try:
        scenario = ToilScenario(scenario)
    except ValueError:
        return None

    if scenario == ToilScenario.local_show:
        return 0
    if scenario in (ToilScenario.working_day_panel, ToilScenario.overnight_day_off):
        return _HALF_DAY_HOURS

    # overnight_working_day: scaled by how late the traveller got home
    hour = parse_return_hour(return_time)
    if hour is None:
        return None
    if hour < _LATE_RETURN_FIRST_HOUR:
        return 0
    if hour >= _LATE_RETURN_CAP_HOUR:
        return _HALF_DAY_HOURS
    return _LATE_RETURN_HOURS[hour]


def toil_display_text(hours: Optional[int], scenario: Union[ToilScenario, str]) -> str:
    """Human-readable summary of a calculation result."""
    if hours is None:
        return "Calculating..."
    if hours == 0:
        return "No TOIL will be allocated"
    if scenario == ToilScenario.working_day_panel and hours == _HALF_DAY_HOURS:
        return "You will be able to start at 1pm on the following day"
    suffix = "" if hours == 1 else "s"
    return f"{hours} hour{suffix} of TOIL will be allocated"
