"""Prompt loading and rendering from YAML/Jinja2 templates.

YAML format::

    name: generate_tests
    messages:
      - role: system
        content: |
          You write unit tests for {{ language }} projects.
      - role: user
        content: |
          Write tests for {{ target_file }}.

Usage::

    from utagent.prompts import render_prompt

    turns = render_prompt(DEFAULT_TEMPLATE, target_file="src/app.py", language="Python")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateNotFound

from utagent.messages import SystemTurn, Turn, UserTurn

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = Path(__file__).parent / "templates" / "generate_tests.yaml"


class _YAMLInlineLoader(BaseLoader):
    """Jinja2 loader for inline strings (no filesystem template inheritance)."""

    def get_source(
        self, environment: Environment, template: str
    ) -> tuple[str, str | None, None]:
        raise TemplateNotFound(template)


# StrictUndefined so missing vars fail loud.
_env = Environment(loader=_YAMLInlineLoader(), undefined=StrictUndefined)

_ROLES = {"system": SystemTurn, "user": UserTurn}


def render_prompt(
    template_path: str | Path,
    **context: Any,
) -> list[Turn]:
    """Load a YAML prompt template and render it into turns.

    Args:
        template_path: Path to the YAML file (absolute, or relative to cwd).
        **context: Variables to substitute into Jinja2 templates.

    Raises:
        FileNotFoundError: If template_path doesn't exist.
        yaml.YAMLError: If YAML is malformed.
        jinja2.UndefinedError: If a template variable is missing from context.
        ValueError: If the YAML structure is invalid or a role is not system/user.
    """
    path = Path(template_path)
    if not path.is_absolute():
        path = Path.cwd() / path

    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))

    if not isinstance(raw, dict):
        raise ValueError(f"Prompt YAML must be a mapping, got {type(raw).__name__}: {path}")

    messages_raw = raw.get("messages")
    if not messages_raw:
        raise ValueError(f"Prompt YAML missing 'messages' key: {path}")

    if not isinstance(messages_raw, list):
        raise ValueError(f"'messages' must be a list, got {type(messages_raw).__name__}: {path}")

    turns: list[Turn] = []
    for i, msg in enumerate(messages_raw):
        if not isinstance(msg, dict) or "role" not in msg or "content" not in msg:
            raise ValueError(f"Message {i} must have 'role' and 'content' keys: {path}")
        role = str(msg["role"]).strip().lower()
        turn_cls = _ROLES.get(role)
        if turn_cls is None:
            raise ValueError(f"Message {i} has unsupported role {role!r} (expected system or user): {path}")

        rendered = _env.from_string(str(msg["content"])).render(**context).strip()
        turns.append(turn_cls(rendered))

    logger.debug(
        "Rendered prompt %s (%d turns, %d total chars)",
        path.name,
        len(turns),
        sum(len(t.text) for t in turns),
    )
    return turns


def split_prompt(turns: list[Turn]) -> tuple[str | None, str]:
    """Return (system text, joined user text) for seeding an executor."""
    system = next((t.text for t in turns if isinstance(t, SystemTurn)), None)
    user = "\n\n".join(t.text for t in turns if isinstance(t, UserTurn))
    return system, user
