"""Presentation layer - human-friendly formatting."""

from .human_formatter import format_apply_result, format_change, format_change_set, format_outputs

__all__ = ["format_apply_result", "format_change", "format_change_set", "format_outputs"]
