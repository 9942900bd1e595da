import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from notification_engine.core.errors import TemplateRenderError

PLACEHOLDER = re.compile(r"{{\s*([A-Za-z_][\w.]*)\s*}}")


@dataclass(frozen=True)
class RenderedContent:
    subject: Optional[str]
    body: str


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; every placeholder must have a value."""
    missing = sorted({name for name in PLACEHOLDER.findall(text) if variables.get(name) is None})
    if missing:
        raise TemplateRenderError(f"missing template variables: {', '.join(missing)}")
    return PLACEHOLDER.sub(lambda match: str(variables[match.group(1)]), text)


class TemplateRenderer:
    def render(self, content, variables: Mapping[str, Any]) -> RenderedContent:
        subject = render_text(content.subject, variables) if content.subject else None
        return RenderedContent(subject=subject, body=render_text(content.body, variables))
