# /chatbotflex/workflows/validator.py

"""
Pure validation functions for bot flows.

Two concerns live here:
- validating what a user typed into an `input` node, and
- validating an authored flow document before the store accepts it.

All functions are deterministic and side-effect free (no database access,
no logging, no state mutation).
"""

import math
import re
from typing import Any, Dict, List, Optional, TypedDict

from chatbotflex.models.flow import NODE_TYPES

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 11


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _valid() -> ValidationResult:
    return {"is_valid": True, "error_code": None, "message": None}


def _invalid(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def is_number(value: str) -> bool:
    try:
        number = float(value.strip())
    except ValueError:
        return False
    return math.isfinite(number)


def validate_input(value: Optional[str], validation: str = "text") -> ValidationResult:
    """
    Validate a reply captured by an input node.

    Args:
        value: The raw inbound text
        validation: One of 'text', 'email', 'phone', 'number'

    Returns:
        ValidationResult with is_valid=True if the reply is acceptable
    """
    text = (value or "").strip()

    if validation == "email":
        if not EMAIL_PATTERN.match(text):
            return _invalid("INVALID_EMAIL", f"'{text}' is not a valid email address")
        return _valid()

    if validation == "phone":
        digits = re.sub(r"\D", "", text)
        if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            return _invalid(
                "INVALID_PHONE",
                f"Phone numbers need {PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits, got {len(digits)}",
            )
        return _valid()

    if validation == "number":
        if not text or not is_number(text):
            return _invalid("INVALID_NUMBER", f"'{text}' is not a number")
        return _valid()

    if not text:
        return _invalid("EMPTY_INPUT", "Reply cannot be empty")
    return _valid()


def validate_flow_graph(document: Dict[str, Any]) -> List[str]:
    """
    Check an authored flow document for structural problems.

    Returns a list of human-readable problems; an empty list means the
    document can be stored. The interpreter tolerates every problem listed
    here, so this is an authoring aid rather than a safety net.
    """
    problems: List[str] = []
    nodes = document.get("nodes") or []
    edges = document.get("edges") or []

    node_ids = set()
    trigger_count = 0
    condition_choices: Dict[str, List[str]] = {}

    for index, node in enumerate(nodes):
        if not isinstance(node, dict):
            problems.append(f"Node #{index} is not an object")
            continue
        node_id = node.get("id")
        if not node_id:
            problems.append(f"Node #{index} has no id")
            continue
        if node_id in node_ids:
            problems.append(f"Duplicate node id '{node_id}'")
        node_ids.add(node_id)

        node_type = node.get("type")
        if node_type not in NODE_TYPES:
            problems.append(f"Node '{node_id}' has unknown type '{node_type}'")
        if node_type == "trigger":
            trigger_count += 1
        if node_type == "condition":
            data = node.get("data") or {}
            choices = data.get("conditions") or node.get("options") or []
            condition_choices[node_id] = [str(c).strip() for c in choices]
            if not condition_choices[node_id]:
                problems.append(f"Condition node '{node_id}' has no conditions")

    if trigger_count > 1:
        problems.append(f"Flow has {trigger_count} trigger nodes; at most one is allowed")

    for index, edge in enumerate(edges):
        if not isinstance(edge, dict):
            problems.append(f"Edge #{index} is not an object")
            continue
        source, target = edge.get("source"), edge.get("target")
        if source not in node_ids:
            problems.append(f"Edge '{edge.get('id', index)}' starts at unknown node '{source}'")
        if target not in node_ids:
            problems.append(f"Edge '{edge.get('id', index)}' points to unknown node '{target}'")
        if source in condition_choices:
            label = edge.get("label")
            if label is None or str(label).strip() not in condition_choices[source]:
                problems.append(
                    f"Edge '{edge.get('id', index)}' leaves condition '{source}' with label "
                    f"'{label}', which is not one of its conditions"
                )

    return problems
