from .constants import DEFAULT_EXIT_KEY
from .engine import NavigationEngine, NextAction
from .ir import BranchingRule, FormDefinition, Question, QuestionChoice, QuestionType, ResponseItem
from .loader import FormLoadError, build_form_definition, load_form_definition
from .operators import DEFAULT_OPERATORS, evaluate_rule

__all__ = [
    "DEFAULT_EXIT_KEY",
    "DEFAULT_OPERATORS",
    "BranchingRule",
    "FormDefinition",
    "FormLoadError",
    "NavigationEngine",
    "NextAction",
    "Question",
    "QuestionChoice",
    "QuestionType",
    "ResponseItem",
    "build_form_definition",
    "evaluate_rule",
    "load_form_definition",
]
