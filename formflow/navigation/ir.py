from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

QuestionType = Literal[
    "short_text",
    "long_text",
    "single_choice",
    "multiple_choice",
    "numeric_scale",
]

# Remote catalogs historically stored numeric scales as "nps"
_QUESTION_TYPE_ALIASES: dict[str, str] = {"nps": "numeric_scale"}


class QuestionChoice(BaseModel):
    """Selectable option of a choice question."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str | None = None
    label: str
    value: str
    order: int = 0
    is_default: bool = False


class Question(BaseModel):
    """Catalog entry the user can be asked to answer."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str
    uid: str
    type: QuestionType
    label: str = ""
    required: bool = False
    order: int = 0
    choices: list[QuestionChoice] = Field(default_factory=list)
    settings_json: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _resolve_type_alias(cls, value: object) -> object:
        if isinstance(value, str):
            return _QUESTION_TYPE_ALIASES.get(value, value)
        return value

    @field_validator("choices")
    @classmethod
    def _sort_choices(cls, value: list[QuestionChoice]) -> list[QuestionChoice]:
        return sorted(value, key=lambda c: c.order)

    @property
    def is_choice(self) -> bool:
        return self.type in ("single_choice", "multiple_choice")

    @property
    def is_multi_valued(self) -> bool:
        return self.type == "multiple_choice"

    def choice_values(self) -> list[str]:
        return [c.value for c in self.choices]


class BranchingRule(BaseModel):
    """Conditional edge from a question to another question or to a flow exit.

    ``operator`` is kept as a free string so an unknown token degrades to
    "no match" at evaluation time instead of failing the whole catalog.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str | None = None
    question_id: str
    operator: str
    value: Any = None
    target_question_id: str | None = None
    exit_key: str | None = None
    order: int = 0

    @property
    def exits(self) -> bool:
        return not self.target_question_id


class ResponseItem(BaseModel):
    """Stored answer as the remote store returns it (keyed by question id)."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str | None = None
    response_id: str | None = None
    question_id: str
    value: Any = None


class FormDefinition(BaseModel):
    """Immutable catalog + rule set for one form version."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str
    slug: str | None = None
    title: str = ""
    description: str | None = None
    version_id: str | None = None
    exit_map: dict[str, str] = Field(default_factory=dict)
    questions: list[Question] = Field(default_factory=list)
    branching_rules: list[BranchingRule] = Field(default_factory=list)

    def questions_by_order(self) -> list[Question]:
        """Get questions sorted by display order."""
        return sorted(self.questions, key=lambda q: q.order)

    def rules_by_order(self) -> list[BranchingRule]:
        """Get rules sorted by their tie-break order."""
        return sorted(self.branching_rules, key=lambda r: r.order)

    def question_by_uid(self, uid: str) -> Question | None:
        for q in self.questions:
            if q.uid == uid:
                return q
        return None

    def question_by_id(self, question_id: str) -> Question | None:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None
