"""Placeholder interpolation for environment and config strings."""

import re
from collections.abc import Mapping

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def interpolate(template: str, substitutions: Mapping[str, str]) -> str:
    """
    Replace ``${NAME}`` placeholders with values from substitutions.

    Placeholders whose name has no substitution are left untouched, so a
    partially resolved string can be interpolated again later.

    Args:
        template: String possibly containing ``${NAME}`` tokens
        substitutions: Mapping of placeholder name to replacement value

    Returns:
        The interpolated string
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in substitutions:
            return str(substitutions[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def has_placeholder(value: str, name: str) -> bool:
    """Check whether value contains the ``${name}`` token."""
    return f"${{{name}}}" in value
