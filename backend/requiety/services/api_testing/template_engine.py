"""Template rendering for request fields."""

import logging
import re
from typing import Iterable

from requiety.schemas.api_request import APIRequestSchema
from requiety.schemas.environment import VariableSchema

logger = logging.getLogger(__name__)


class TemplateError(ValueError):
    """Raised internally when a template has malformed placeholder syntax."""
    pass


class TemplateEngine:
    """
    Renders {{variable}} placeholders from a flat key -> string mapping.

    Supports:
    - Simple variables: {{base_url}}
    - Padded placeholders: {{ token }}
    - Dotted or dashed keys looked up verbatim: {{api.host}}, {{x-api-key}}

    Keys missing from the context render as an empty string. A template with
    malformed placeholders is returned unchanged and a warning is logged.
    """

    VARIABLE_PATTERN = re.compile(r'\{\{\s*([^{}]*?)\s*\}\}')
    KEY_PATTERN = re.compile(r'^[\w.\-$]+$')

    def render(self, template: str | None, context: dict[str, str]) -> str:
        """
        Render a single string.

        Args:
            template: String containing {{variable}} patterns
            context: Variable values keyed by variable name

        Returns:
            Rendered string, or the original template if it is malformed
        """
        if not template:
            return ""

        if not isinstance(template, str):
            return str(template)

        try:
            return self._render_strict(template, context)
        except TemplateError as e:
            logger.warning("Template render error: %s", e)
            return template

    def render_request(
        self,
        request: APIRequestSchema,
        variables: Iterable[VariableSchema],
    ) -> APIRequestSchema:
        """
        Render every templatable field of a request.

        Args:
            request: Stored request definition (left untouched)
            variables: Variables in resolution order, later entries win

        Returns:
            Deep copy of the request with url, headers, body and auth rendered
        """
        context = self.build_context(variables)
        rendered = request.model_copy(deep=True)

        rendered.url = self.render(rendered.url, context)

        for header in rendered.headers:
            header.name = self.render(header.name, context)
            header.value = self.render(header.value, context)

        body = rendered.body
        if body.type in ("json", "raw", "text"):
            if body.text:
                body.text = self.render(body.text, context)
        elif body.type == "graphql":
            if body.graphql is not None:
                body.graphql.query = self.render(body.graphql.query, context)
                body.graphql.variables = self.render(body.graphql.variables, context)
        elif body.type in ("form-urlencoded", "form-data"):
            for param in body.params:
                param.name = self.render(param.name, context)
                param.value = self.render(param.value, context)

        auth = rendered.authentication
        if auth.type == "bearer" and auth.token:
            auth.token = self.render(auth.token, context)
        elif auth.type == "basic":
            if auth.username:
                auth.username = self.render(auth.username, context)
            if auth.password:
                auth.password = self.render(auth.password, context)

        return rendered

    def build_context(self, variables: Iterable[VariableSchema]) -> dict[str, str]:
        """Flatten variables into a render context; later duplicates overwrite earlier ones."""
        context: dict[str, str] = {}
        for variable in variables:
            context[variable.key] = variable.value
        return context

    def has_variables(self, template: str | None) -> bool:
        """Check if a string contains any {{variable}} patterns."""
        if not template or not isinstance(template, str):
            return False
        return bool(self.VARIABLE_PATTERN.search(template))

    def extract_variables(self, template: str | None) -> list[str]:
        """Extract all variable names from a template."""
        if not template or not isinstance(template, str):
            return []
        return [match.group(1) for match in self.VARIABLE_PATTERN.finditer(template)]

    def _render_strict(self, template: str, context: dict[str, str]) -> str:
        parts: list[str] = []
        position = 0

        while True:
            start = template.find("{{", position)
            if start == -1:
                parts.append(template[position:])
                break

            end = template.find("}}", start + 2)
            if end == -1:
                raise TemplateError(f"unclosed placeholder at position {start}")

            key = template[start + 2:end].strip()
            if not key or not self.KEY_PATTERN.match(key):
                raise TemplateError(f"invalid placeholder expression {{{{{template[start + 2:end]}}}}}")

            parts.append(template[position:start])
            value = context.get(key)
            parts.append("" if value is None else str(value))
            position = end + 2

        return "".join(parts)


_default_engine = TemplateEngine()


def render(template: str | None, context: dict[str, str]) -> str:
    """Render a single string with the shared engine."""
    return _default_engine.render(template, context)


def render_request(
    request: APIRequestSchema,
    variables: Iterable[VariableSchema],
) -> APIRequestSchema:
    """Render a whole request with the shared engine."""
    return _default_engine.render_request(request, variables)
