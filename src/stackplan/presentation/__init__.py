"""Presentation layer - human-friendly formatting."""

from .human_formatter import format_plan, format_apply_result, format_snapshot, format_graph, plan_summary_line

__all__ = ["format_plan", "format_apply_result", "format_snapshot", "format_graph", "plan_summary_line"]
