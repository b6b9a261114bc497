"""Conditional questionnaire navigation with debounced answer autosave."""

__version__ = "0.1.0"
