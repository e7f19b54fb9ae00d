"""Session module - Durable project context and resumable history."""

from .models import (
	ComplexityPreference,
	Constraints,
	EventKind,
	PhaseId,
	ProjectContext,
	SessionEvent,
)
from .store import SCHEMA_VERSION, SessionStore

__all__ = [
	"ComplexityPreference",
	"Constraints",
	"EventKind",
	"PhaseId",
	"ProjectContext",
	"SessionEvent",
	"SessionStore",
	"SCHEMA_VERSION",
]
