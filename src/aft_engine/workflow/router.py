"""Lifecycle action API router.

One POST route per action in the transition table, ``/requests/{id}/<action>``.
The body is handed to the orchestrator unparsed so that malformed payloads are
refused (and audited) like any other invalid action.
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from aft_engine.aft_requests.schemas import RequestResponse
from aft_engine.common.security import ActorContext, require_actor, require_api_key
from aft_engine.workflow.authorization import authorize, roles_for
from aft_engine.workflow.schemas import ActionResult
from aft_engine.workflow.states import ACTION_LABELS, Action
from aft_engine.workflow.transitions import TRANSITIONS, legal_actions

router = APIRouter(tags=["workflow"])


def _get_orchestrator():
    from aft_engine.deps import get_orchestrator
    return get_orchestrator()


def _get_db():
    from aft_engine.deps import get_db
    return get_db()


def _make_action_endpoint(action: Action):
    async def perform(
        request_id: str,
        body: Optional[dict[str, Any]] = Body(None),
        actor: ActorContext = Depends(require_actor),
    ) -> ActionResult:
        outcome = await _get_orchestrator().perform_action(
            request_id,
            actor.actor_id,
            action,
            body,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )
        return ActionResult(
            action=action.value,
            from_status=outcome.from_status.value,
            to_status=outcome.to_status.value,
            route=outcome.plan.route.value if outcome.plan.route else None,
            role_used=outcome.role_used.value,
            audit_entry_id=outcome.audit_entry.id,
            request=RequestResponse.model_validate(outcome.request),
        )

    perform.__name__ = f"perform_{action.name.lower()}"
    perform.__doc__ = f"{ACTION_LABELS[action]}."
    return perform


for _action in Action:
    router.add_api_route(
        f"/requests/{{request_id}}/{_action.value}",
        _make_action_endpoint(_action),
        methods=["POST"],
        response_model=ActionResult,
        name=f"perform_{_action.name.lower()}",
    )


@router.get("/requests/{request_id}/available-actions")
async def available_actions(request_id: str, actor: ActorContext = Depends(require_actor)):
    """Actions the caller's roles may attempt at the request's current status."""
    from aft_engine.deps import get_request_store, get_role_resolver

    store = get_request_store()
    async with _get_db().get_session() as session:
        resolved = await get_role_resolver().resolve(session, actor.actor_id)
        request = await store.load_request(session, request_id)
        status = store.status_of(request)
    return {
        "request_id": request_id,
        "status": status.value,
        "actions": [
            a.value for a in legal_actions(status)
            if authorize(resolved.roles, status, a).allowed
        ],
    }


@router.get("/workflow/transitions")
async def list_transitions(_=Depends(require_api_key)):
    """The transition table with the roles allowed to perform each action."""
    return [
        {
            "action": t.action.value,
            "from": sorted(s.value for s in t.sources),
            "to": t.target.value,
            "condition": t.condition,
            "roles": [r.value for r in roles_for(t.action)],
        }
        for t in TRANSITIONS.values()
    ]
