"""Expansion of ``${NAME}`` placeholders in user-supplied values.

Every field an operator can edit (application id, image, URIs, labels,
rendered file name) passes through :func:`resolve` before it is written into
the application definition, so values such as ``${BUILD_NUMBER}`` or
``${GIT_COMMIT}`` can be referenced from the deployment configuration.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.\-]*)\}")


def resolve(value: Optional[str], variables: Optional[Mapping[str, str]]) -> Optional[str]:
    """Replace every known ``${NAME}`` token in `value`.

    Unknown tokens are left verbatim. ``None`` is passed through unchanged.
    """
    if value is None or not variables:
        return value

    def _substitute(match: "re.Match[str]") -> str:
        replacement = variables.get(match.group(1))
        if replacement is None:
            return match.group(0)
        return str(replacement)

    return _PLACEHOLDER.sub(_substitute, value)


def variable_context(*sources: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Flatten several mappings into one string context; later sources win."""
    context: Dict[str, str] = {}
    for source in sources:
        if not source:
            continue
        for name, value in source.items():
            if value is None:
                continue
            context[str(name)] = str(value)
    return context
