"""
{{path}} template rendering for agent task prompts and action params.
"""

import json
import re
from typing import Any

from django.utils.html import escape

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


def resolve_path(context: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; missing segments give None."""
    current = context
    for part in path.strip().split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def render(template: str, context: dict) -> str:
    if not template:
        return ""

    def substitute(match):
        value = resolve_path(context, match.group(1))
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        return escape(str(value))

    return _PLACEHOLDER.sub(substitute, template)


def context_from_event(event) -> dict:
    actor = event.actor
    context = {
        "event": {
            "id": event.pk,
            "type": event.event_type,
            "actor": {"id": actor.pk, "name": actor.get_username()} if actor else None,
            "data": event.data or {},
            "created_at": event.created_at.isoformat() if event.created_at else None,
        },
        "subject": (
            {"id": event.subject_id, "type": event.subject_type}
            if event.subject_type
            else {}
        ),
    }
    if event.collective_id:
        collective = event.collective
        context["collective"] = {
            "id": collective.pk,
            "handle": collective.handle,
            "name": collective.name,
        }
    return context


def context_from_trigger_data(trigger_data: dict) -> dict:
    """Context for schedule, webhook and manual runs that have no event."""
    trigger_data = trigger_data or {}
    context = {}

    payload = trigger_data.get("payload")
    if isinstance(payload, dict):
        context["payload"] = payload
    elif isinstance(payload, str):
        context["payload"] = {"raw": payload}

    if isinstance(trigger_data.get("inputs"), dict):
        context["inputs"] = trigger_data["inputs"]

    if "scheduled_at" in trigger_data:
        context["schedule"] = {"scheduled_at": trigger_data["scheduled_at"]}

    context["webhook"] = {
        "path": trigger_data.get("webhook_path"),
        "received_at": trigger_data.get("received_at"),
        "source_ip": trigger_data.get("source_ip"),
    }
    return context
