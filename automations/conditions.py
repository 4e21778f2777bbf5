"""
Condition evaluation for automation rules.

Conditions are a list of {"field": "event.type", "operator": "==", "value": ...}
dicts evaluated against a template context; all of them must pass.
"""

import logging
import re
from typing import Any

import regex
from django.conf import settings

from .templates import resolve_path

logger = logging.getLogger(__name__)

# Longer patterns are rejected outright
MAX_REGEX_LENGTH = 500

# Nested quantifiers like (a+)+, quantified alternations like (a|b)+ and
# huge repetition bounds like {1,10000}
_DANGEROUS_PATTERNS = (
    re.compile(r"\([^)]*[+*]\)[+*]"),
    re.compile(r"\([^)]*\|[^)]*\)[+*]+"),
    re.compile(r"\{\d*,\s*(\d{4,})\}"),
)


def evaluate_all(conditions: Any, context: dict) -> bool:
    if not conditions or not isinstance(conditions, list):
        return True
    return all(evaluate_condition(condition, context) for condition in conditions)


def evaluate_condition(condition: dict, context: dict) -> bool:
    if not isinstance(condition, dict):
        return False
    field_path = condition.get("field")
    operator = condition.get("operator")
    if not field_path or not operator:
        return False

    actual = resolve_path(context, field_path)
    return apply_operator(operator, actual, condition.get("value"))


def apply_operator(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "==":
        return _as_text(actual) == _as_text(expected)
    if operator == "!=":
        return _as_text(actual) != _as_text(expected)
    if operator in (">", ">=", "<", "<="):
        return _compare_numeric(operator, actual, expected)
    if operator == "contains":
        return _as_text(expected) in _as_text(actual)
    if operator == "not_contains":
        return _as_text(expected) not in _as_text(actual)
    if operator == "matches":
        return safe_regex_match(_as_text(expected), _as_text(actual)) is True
    if operator == "not_matches":
        # An invalid pattern does not count as "doesn't match"
        return safe_regex_match(_as_text(expected), _as_text(actual)) is False
    logger.debug(f"Unknown condition operator: {operator}")
    return False


def get_regex_timeout() -> float:
    return getattr(settings, "HARMONIC_AUTOMATION_REGEX_TIMEOUT", 1.0)


def safe_regex_match(pattern: str, text: str) -> bool | None:
    """
    Returns True/False for a match, or None when the pattern is refused,
    invalid, or runs past the regex timeout.
    """
    if len(pattern) > MAX_REGEX_LENGTH:
        return None
    if any(dangerous.search(pattern) for dangerous in _DANGEROUS_PATTERNS):
        logger.warning(f"Refusing potentially catastrophic regex: {pattern[:50]}")
        return None
    try:
        compiled = regex.compile(pattern)
    except regex.error:
        return None
    try:
        return compiled.search(text, timeout=get_regex_timeout()) is not None
    except TimeoutError:
        logger.warning(f"Regex timed out for pattern: {pattern[:50]}")
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compare_numeric(operator: str, actual: Any, expected: Any) -> bool:
    try:
        a = float(actual)
        e = float(expected)
    except (TypeError, ValueError):
        return False
    if operator == ">":
        return a > e
    if operator == ">=":
        return a >= e
    if operator == "<":
        return a < e
    return a <= e
