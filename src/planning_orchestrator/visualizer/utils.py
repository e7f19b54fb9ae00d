"""Shared utilities for visualizer views."""

from datetime import datetime
from typing import Optional

from ..session.models import EventKind

KIND_STYLES = {
	EventKind.COMPLETED: "green",
	EventKind.FAILED: "red",
	EventKind.REVISION: "yellow",
}


def format_timestamp(dt: datetime, now: Optional[datetime] = None) -> str:
	"""Format a timestamp as relative time (e.g. '2m ago') or absolute."""
	now = now or datetime.now(dt.tzinfo)
	total_secs = int((now - dt).total_seconds())

	if total_secs < 0:
		return dt.isoformat(timespec="seconds")
	if total_secs < 60:
		return f"{total_secs}s ago"
	if total_secs < 3600:
		return f"{total_secs // 60}m ago"
	if total_secs < 86400:
		return f"{total_secs // 3600}h ago"
	return f"{total_secs // 86400}d ago"


def truncate(text: str, max_len: int = 60) -> str:
	"""Shorten text for table display."""
	text = text.strip()
	if len(text) <= max_len:
		return text
	return text[:max_len - 3] + "..."


def score_style(score: float) -> str:
	"""Rich style for a complexity score, banded like the breakdown policy."""
	if score > 0.5:
		return "red"
	if score > 0.3:
		return "yellow"
	return "green"
