"""Visualizer package - Rich terminal views for planning runs."""

from .session_history import (
	render_phase_progress,
	render_quarantined,
	render_session_history,
	render_task_tree,
)

__all__ = [
	"render_phase_progress",
	"render_quarantined",
	"render_session_history",
	"render_task_tree",
]
