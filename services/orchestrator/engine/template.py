"""Template rendering for {{ name }}-style tokens in messages, bodies and field values."""

import json
from typing import Any, Dict, Optional
from jinja2 import BaseLoader, TemplateError
from jinja2.sandbox import SandboxedEnvironment
from shared.exceptions import TemplateResolutionError
from shared.types import Contact


def build_template_context(
    contact: Optional[Contact],
    variables: Dict[str, Any],
    extra: Optional[Dict[str, str]] = None,
    fallback_name: str = "there",
    use_contact_name: bool = True,
) -> Dict[str, Any]:
    """Flattens contact fields, execution context and node variables into one namespace.

    Later sources win: custom fields, then contact attributes, then execution
    context variables, then node-level ``extra`` values.
    """
    context: Dict[str, Any] = {}
    if contact is not None:
        context.update(contact.custom_fields)
        contact_data = contact.model_dump(mode="json")
        context.update({k: v for k, v in contact_data.items() if v is not None})
        context["contact"] = contact_data

    name = contact.name if contact is not None and contact.name and use_contact_name else fallback_name
    context["name"] = name
    context["first_name"] = name.split()[0] if name else fallback_name

    context.update(variables)
    context["variables"] = dict(variables)
    if extra:
        context.update(extra)
    return context


class TemplateResolver:

    def __init__(self):
        self.jinja_env = SandboxedEnvironment(
            loader=BaseLoader(),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, text: Optional[str], context: Dict[str, Any]) -> str:
        """Renders a single string; unknown tokens render empty, other failures raise TemplateResolutionError."""
        if not text:
            return ""
        if "{{" not in text and "{%" not in text:
            return text
        try:
            return self.jinja_env.from_string(text).render(context)
        except (TemplateError, TypeError, ValueError, ArithmeticError) as e:
            raise TemplateResolutionError(f"Template resolution failed: {str(e)}")

    def render_variables(self, variables: Dict[str, str], context: Dict[str, Any]) -> Dict[str, str]:
        return {key: self.render(value, context) for key, value in variables.items()}

    def render_body(self, body: Optional[str], context: Dict[str, Any]) -> Any:
        """Renders a webhook body and parses it as JSON when it is JSON."""
        if body is None or not body.strip():
            return None
        rendered = self.render(body, context)
        if rendered.lstrip().startswith(("{", "[")):
            try:
                return json.loads(rendered)
            except json.JSONDecodeError:
                pass
        return rendered

    def resolve(self, value: Any, context: Dict[str, Any]) -> Any:
        """Recursively walks a structure resolving every template string"""
        if isinstance(value, str):
            return self.render(value, context)
        elif isinstance(value, dict):
            return {k: self.resolve(v, context) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item, context) for item in value]
        else:
            return value
