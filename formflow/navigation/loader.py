from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .ir import FormDefinition

logger = logging.getLogger(__name__)


class FormLoadError(Exception):
    """Raised when a form definition cannot be produced."""


def build_form_definition(payload: dict[str, Any]) -> FormDefinition:
    """Build a FormDefinition from a plain dict.

    Accepts either ``questions`` with nested ``choices`` or the flat remote
    shape where ``question_choices`` is a sibling list keyed by ``question_id``.
    """
    if not isinstance(payload, dict):
        raise FormLoadError("Form definition must be a JSON object")

    data = dict(payload)
    flat_choices = data.pop("question_choices", None)
    if isinstance(flat_choices, list):
        questions: list[dict[str, Any]] = []
        for raw in data.get("questions", []):
            if not isinstance(raw, dict):
                continue
            q = dict(raw)
            if not q.get("choices"):
                q["choices"] = [
                    c for c in flat_choices if isinstance(c, dict) and c.get("question_id") == q.get("id")
                ]
            questions.append(q)
        data["questions"] = questions

    # Archived questions stay in the remote catalog but are never shown
    data["questions"] = [
        q for q in data.get("questions", []) if not (isinstance(q, dict) and q.get("archived"))
    ]

    try:
        form = FormDefinition.model_validate(data)
    except ValidationError as exc:
        raise FormLoadError(f"Invalid form definition: {exc}") from exc

    known_ids = {q.id for q in form.questions}
    for rule in form.branching_rules:
        if rule.question_id not in known_ids:
            logger.warning("Rule %s is attached to unknown question %s", rule.id, rule.question_id)
        if rule.target_question_id and rule.target_question_id not in known_ids:
            logger.warning("Rule %s targets unknown question %s", rule.id, rule.target_question_id)

    logger.info(
        "Loaded form %s with %d questions and %d rules",
        form.slug or form.id,
        len(form.questions),
        len(form.branching_rules),
    )
    return form


def load_form_definition(path: str | Path) -> FormDefinition:
    """Load a FormDefinition from a JSON file."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FormLoadError(f"Cannot read form definition {path}: {exc}") from exc
    return build_form_definition(raw)
