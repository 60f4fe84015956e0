# /chatbotflex/workflows/variables.py

"""
Text helpers for the flow engine: placeholder substitution, capture-key
resolution for input nodes, and trigger keyword matching.

Pure functions; no I/O.
"""

import re
from typing import Any, Iterable, Mapping, Optional

# Label fragments mapped to the variable name an input node captures into,
# checked in order against the node label (case-insensitive).
LABEL_CAPTURE_KEYS = (
    (("nome",), "nome"),
    (("email",), "email"),
    (("telefone", "phone"), "telefone"),
)
DEFAULT_CAPTURE_KEY = "userInput"


def substitute_variables(text: Optional[str], user_data: Mapping[str, Any]) -> str:
    """
    Replaces every case-insensitive `{key}` in `text` with the captured value.

    All placeholders are resolved in one pass over the original text, so a
    substituted value is never scanned again for placeholders.
    """
    if not text:
        return ""
    if not user_data:
        return text

    values = {str(key).lower(): value for key, value in user_data.items()}
    pattern = re.compile(
        "|".join(r"\{" + re.escape(str(key)) + r"\}" for key in user_data),
        re.IGNORECASE,
    )

    def _replace(match: re.Match) -> str:
        value = values.get(match.group(0)[1:-1].lower())
        return "" if value is None else str(value)

    return pattern.sub(_replace, text)


def resolve_capture_key(variable_name: Optional[str], label: Optional[str]) -> str:
    """Explicit variable name first, then a guess from the node label, then the generic key."""
    if variable_name and variable_name.strip():
        return variable_name.strip()
    lowered = (label or "").lower()
    for fragments, key in LABEL_CAPTURE_KEYS:
        if any(fragment in lowered for fragment in fragments):
            return key
    return DEFAULT_CAPTURE_KEY


def contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword.strip().lower() in lowered for keyword in keywords if keyword and keyword.strip())


def trigger_matches(trigger_type: str, keywords: Iterable[str], text: str) -> bool:
    """
    A trigger fires for 'any', when it has no usable keywords, or when the
    text contains one of its keywords.
    """
    usable = [k for k in keywords if k and k.strip()]
    if trigger_type == "any" or not usable:
        return True
    return contains_keyword(text, usable)
