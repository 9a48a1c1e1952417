"""Feature flags for the gradual TOIL / sick leave rollout.

Built once from settings and handed to the balance calculator, validator
and services, so a single request never sees flags change underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass

from leave_tracker.common.constants import LeaveType


@dataclass(frozen=True)
class FeatureFlags:
    toil_enabled: bool = False
    toil_request_enabled: bool = False
    toil_admin_enabled: bool = False
    sick_leave_enabled: bool = False

    @property
    def multi_leave_type_enabled(self) -> bool:
        return self.toil_enabled or self.sick_leave_enabled

    def available_leave_types(self) -> list[LeaveType]:
        """Leave types a user may currently pick, ANNUAL first."""
        types = [LeaveType.annual]
        if self.toil_enabled:
            types.append(LeaveType.toil)
        if self.sick_leave_enabled:
            types.append(LeaveType.sick)
        return types

    def can_request(self, leave_type: LeaveType) -> bool:
        if leave_type == LeaveType.annual:
            return True
        if leave_type == LeaveType.toil:
            return self.toil_enabled
        if leave_type == LeaveType.sick:
            return self.sick_leave_enabled
        return False
