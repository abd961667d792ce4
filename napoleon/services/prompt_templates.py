"""
Prompt template loading with {{variable}} substitution.

The raw text of each template is cached together with the file's
modification time and re-read as soon as the mtime changes, so an edited
template is never served stale. Substitution runs on every render; the
cache holds one entry per template file no matter how many messages pass
through it.
"""

import re
from pathlib import Path
from typing import Any

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptTemplateError(Exception):
    """Raised when a template file is missing or unreadable."""

    def __init__(self, message: str, template_name: str):
        super().__init__(message)
        self.template_name = template_name


class PromptTemplateLoader:
    def __init__(self, template_dir: str | Path | None = None):
        self.template_dir = Path(template_dir or settings.PROMPT_TEMPLATE_DIR)
        # template name -> (mtime, raw text)
        self._templates: dict[str, tuple[float, str]] = {}

    def render(self, template_name: str, variables: dict[str, Any]) -> str:
        return substitute(self.load(template_name), variables)

    def load(self, template_name: str) -> str:
        path = self.template_dir / f"{template_name}.txt"
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise PromptTemplateError(
                f"Failed to load prompt template: {template_name}", template_name
            ) from e

        cached = self._templates.get(template_name)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        try:
            template = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PromptTemplateError(
                f"Failed to read prompt template: {template_name}", template_name
            ) from e

        if cached is not None:
            logger.info("Prompt template changed, reloading", template=template_name)
        self._templates[template_name] = (mtime, template)
        return template

    def cached_templates(self) -> int:
        return len(self._templates)

    def invalidate(self, template_name: str | None = None) -> None:
        """Forget the cached text for one template, or for all of them."""
        if template_name is None:
            self._templates.clear()
        else:
            self._templates.pop(template_name, None)


def substitute(template: str, variables: dict[str, Any]) -> str:
    """Replace {{name}} tokens; unknown tokens are left in place."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        if isinstance(value, bool):
            return "true" if value else "false"
        return "" if value is None else str(value)

    return _TOKEN_PATTERN.sub(_replace, template)
