"""AFT-Engine: Assured File Transfer request lifecycle orchestrator."""

from aft_engine.client import AFTClient
from aft_engine.workflow.authorization import authorize
from aft_engine.workflow.states import Action, Role, Status
from aft_engine.workflow.transitions import legal_actions, plan_transition

__all__ = [
    "AFTClient",
    "Action",
    "Role",
    "Status",
    "authorize",
    "legal_actions",
    "plan_transition",
]
__version__ = "0.1.0"
