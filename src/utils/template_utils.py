import re
from typing import Any, Dict, Mapping

# {{name}} or {{ name }}
TEMPLATE_TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def format_template_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_template(text: str, variables: Mapping[str, Any]) -> str:
    """
    Replace {{name}} tokens with the current value of variables[name].

    Tokens naming an unknown variable, or a variable still holding None,
    are left as they are: templates may reference answers that have not
    been collected yet.
    """
    if not text:
        return text or ""

    snapshot: Dict[str, Any] = dict(variables or {})

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = snapshot.get(name)
        if value is None:
            return match.group(0)
        return format_template_value(value)

    return TEMPLATE_TOKEN_PATTERN.sub(_substitute, text)


def render_structure(value: Any, variables: Mapping[str, Any]) -> Any:
    """Render every string inside a nested dict/list payload."""
    if isinstance(value, str):
        return render_template(value, variables)
    if isinstance(value, dict):
        return {key: render_structure(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [render_structure(item, variables) for item in value]
    return value
