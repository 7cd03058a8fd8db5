"""Policy gates and the automation guardrail."""

from sitegate.policy.gates import PolicyGate
from sitegate.policy.guardrail import RESTRICTED_ACTIONS, RestrictedAction, check_automation_action
from sitegate.policy.schemas import ReleaseDecision, Violation, ViolationType

__all__ = [
    "PolicyGate",
    "RESTRICTED_ACTIONS",
    "ReleaseDecision",
    "RestrictedAction",
    "Violation",
    "ViolationType",
    "check_automation_action",
]
