"""Human readable templates for ``log_event``, keyed by ``(domain, action)``.

The templates live in ``event_templates.json`` next to this module, one
object per domain mapping action names to ``str.format`` templates.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

TEMPLATES_PATH = Path(__file__).with_name("event_templates.json")

EVENT_TEMPLATES: dict[tuple[str, str], str] = {}


def _flatten(raw: Any) -> dict[tuple[str, str], str]:
    templates: dict[tuple[str, str], str] = {}
    if not isinstance(raw, dict):
        return templates
    for domain, actions in raw.items():
        if not isinstance(actions, dict):
            continue
        for action, template in actions.items():
            if isinstance(template, str):
                templates[(str(domain), str(action))] = template
    return templates


def load_event_templates(path: Path | None = None) -> dict[tuple[str, str], str]:
    """Read a template file; a broken file yields a single load_error entry."""
    path = path or TEMPLATES_PATH
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {("app", "load_error"): f"Event templates file {path.name} missing"}
    except (OSError, ValueError) as e:
        return {("app", "load_error"): f"Failed to load event templates: {e}"[:200]}
    return _flatten(raw)


def reload_event_templates(path: Path | None = None) -> None:
    global EVENT_TEMPLATES  # noqa: PLW0603
    EVENT_TEMPLATES = load_event_templates(path)


reload_event_templates()

__all__ = ["EVENT_TEMPLATES", "TEMPLATES_PATH", "load_event_templates", "reload_event_templates"]
