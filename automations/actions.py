"""
Actions a general (non-agent) automation rule can run.

Each entry of a rule's action list is a dict with a "type":
    - trigger_agent: {"agent_id": 1, "task": "Review {{subject.id}}", "max_steps": 10}
    - emit_event: {"event_type": "digest.ready", "data": {...}}
    - internal_action: {"action": "log", "params": {...}} runs a registered handler
    - webhook: {"url": "https://...", "body": {...}, "headers": {...}} queues a signed delivery

Internal actions register themselves with the decorator:

    @register_internal_action("archive_note")
    def archive_note(params, context):
        ...
        return {"archived": params["note_id"]}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from . import templates

logger = logging.getLogger(__name__)

InternalAction = Callable[[dict, "ActionContext"], Any]

_INTERNAL_ACTIONS: dict[str, InternalAction] = {}


@dataclass
class ActionContext:
    """What an action knows about the run it belongs to."""

    run: Any
    rule: Any
    template_context: dict

    @property
    def event(self):
        return self.run.triggered_by_event

    def render(self, value: Any) -> Any:
        if isinstance(value, str):
            return templates.render(value, self.template_context)
        if isinstance(value, dict):
            return {key: self.render(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.render(item) for item in value]
        return value


def register_internal_action(name: str) -> Callable[[InternalAction], InternalAction]:
    def decorator(handler: InternalAction) -> InternalAction:
        if name in _INTERNAL_ACTIONS and _INTERNAL_ACTIONS[name] is not handler:
            raise ValueError(f"Internal action '{name}' is already registered")
        _INTERNAL_ACTIONS[name] = handler
        return handler

    return decorator


def unregister_internal_action(name: str) -> None:
    _INTERNAL_ACTIONS.pop(name, None)


def get_internal_action(name: str) -> InternalAction | None:
    return _INTERNAL_ACTIONS.get(name)


def execute_action(index: int, action: Any, context: ActionContext) -> dict:
    """
    Run one action and describe the outcome for the run's actions_executed.

    Exceptions propagate; the executor fails the whole run on them.
    """
    if not isinstance(action, dict):
        return {"index": index, "type": None, "result": {"status": "skipped", "reason": "invalid action"}}

    action_type = action.get("type")
    handler = _ACTION_TYPES.get(action_type)
    if handler is None:
        result = {"status": "skipped", "reason": "unknown action type"}
    else:
        result = handler(action, context)

    logger.debug(f"Automation run {context.run.pk} action {index} ({action_type}): {result}")
    return {"index": index, "type": action_type, "result": result}


def _trigger_agent(action: dict, context: ActionContext) -> dict:
    from agents.models import Agent
    from agents.scheduler import enqueue_agent_task

    agent = Agent.objects.filter(pk=action.get("agent_id"), is_active=True).first()
    if agent is None:
        return {"status": "failed", "error": "Agent not found or inactive"}

    task = context.render(action.get("task") or "")
    if not task.strip():
        return {"status": "failed", "error": "Task prompt is empty"}

    max_steps = action.get("max_steps")
    task_run = enqueue_agent_task(
        agent=agent,
        tenant=context.rule.tenant,
        task=task,
        initiated_by=_initiated_by(context),
        collective=context.rule.collective,
        max_steps=int(max_steps) if max_steps else None,
    )
    return {"status": "success", "task_run_id": task_run.pk}


def _emit_event(action: dict, context: ActionContext) -> dict:
    from .dispatcher import emit_event

    event_type = action.get("event_type")
    if not event_type:
        return {"status": "failed", "error": "event_type is required"}

    event = emit_event(
        tenant=context.rule.tenant,
        collective=context.rule.collective,
        event_type=event_type,
        data=context.render(action.get("data") or {}),
    )
    return {"status": "success", "event_id": event.pk}


def _internal_action(action: dict, context: ActionContext) -> dict:
    name = action.get("action")
    params = context.render(action.get("params") or {})
    handler = get_internal_action(name)
    if handler is None:
        return {"status": "skipped", "action": name, "reason": "unknown internal action"}
    return {"status": "success", "action": name, "output": handler(params, context)}


def _webhook(action: dict, context: ActionContext) -> dict:
    from .webhooks import create_webhook_delivery, is_deliverable_url

    url = action.get("url")
    if not is_deliverable_url(url):
        return {"status": "failed", "url": url, "error": "An http(s) URL is required"}

    delivery = create_webhook_delivery(
        run=context.run,
        url=url,
        body=context.render(action.get("body") or {}),
        method=action.get("method") or "POST",
        headers=context.render(action.get("headers") or {}),
        timeout=action.get("timeout"),
    )
    return {"status": "queued", "delivery_id": delivery.pk}


def _initiated_by(context: ActionContext):
    event = context.event
    if event is not None and event.actor_id:
        return event.actor
    return context.rule.created_by


_ACTION_TYPES: dict[str, Callable[[dict, ActionContext], dict]] = {
    "trigger_agent": _trigger_agent,
    "emit_event": _emit_event,
    "internal_action": _internal_action,
    "webhook": _webhook,
}


@register_internal_action("log")
def log_message(params: dict, context: ActionContext) -> dict:
    message = params.get("message", "")
    logger.info(f"Automation rule {context.rule.pk} says: {message}")
    return {"logged": message}
