"""
Automation guardrail.

Every code path that is not a direct, authenticated human action must call
``check_automation_action`` before performing one of the restricted actions.
The deny-list is unconditional: no project state can unlock it.
"""

from enum import StrEnum

import structlog

from sitegate.errors import GuardrailCode, GuardrailError

logger = structlog.get_logger(__name__)


class RestrictedAction(StrEnum):
    SUBMIT_PERMIT = "SUBMIT_PERMIT"
    RELEASE_FUNDS = "RELEASE_FUNDS"
    SIGN_CONTRACT = "SIGN_CONTRACT"
    RESOLVE_DISPUTE = "RESOLVE_DISPUTE"


RESTRICTED_ACTIONS = frozenset(a.value for a in RestrictedAction)


def is_restricted(action_type: str) -> bool:
    return str(action_type) in RESTRICTED_ACTIONS


def check_automation_action(action_type: str) -> None:
    """Raise GuardrailError if an automated caller attempts a restricted action."""
    if is_restricted(action_type):
        logger.warning("automation_action_blocked", action_type=str(action_type))
        raise GuardrailError(
            GuardrailCode.AUTOMATION_ACTION_BLOCKED,
            f'Automation action "{action_type}" requires human approval and cannot auto-execute',
            action_type=str(action_type),
        )
