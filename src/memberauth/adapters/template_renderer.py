"""ABOUTME: Template rendering adapters for decoupling the service layer from template files
ABOUTME: Provides an abstract interface and a Jinja2 implementation for email bodies"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class TemplateRenderer(ABC):
    """Abstract interface for rendering templates."""

    @abstractmethod
    def render_template(self, template_name: str, **context: Any) -> str:
        """
        Render a template with the given context.

        Args:
            template_name: Path to template file (e.g., "emails/password_reset.txt")
            **context: Variables to pass to the template

        Returns:
            Rendered template as a string
        """
        pass


class JinjaTemplateRenderer(TemplateRenderer):
    """Renders templates shipped with the package using Jinja2."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.environment = Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render_template(self, template_name: str, **context: Any) -> str:
        return self.environment.get_template(template_name).render(**context)
