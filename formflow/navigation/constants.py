"""Constants for the navigation engine.

Operator tokens match the values stored by the remote catalog.
"""

# Rule operators
OP_EQUALS = "eq"
OP_NOT_EQUALS = "neq"
OP_IN = "in"
OP_NOT_IN = "not_in"
OP_GREATER_THAN = "gt"
OP_LESS_THAN = "lt"
OP_IS_EMPTY = "is_empty"
OP_IS_NOT_EMPTY = "is_not_empty"

# Exit key reported when linear progression runs past the last question
DEFAULT_EXIT_KEY = "success"

# Progress bounds (percent)
MIN_PROGRESS = 0
MAX_PROGRESS = 100

# String prefixes that mark a stored value as JSON-encoded
JSON_VALUE_PREFIXES = ('"', "[", "{")
