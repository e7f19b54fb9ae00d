"""
Phase State Machine - sequences the seven planning phases.

The current state is never stored: it is recovered by replaying the
append-only session history. A completed event for the current phase
advances to its successor; a revision event re-enters the phase it names.
Failed step events are history only and never move the machine.

States:
	CONTEXT -> ORCHESTRATION_SETUP -> DOC_SCAFFOLD -> RESEARCH ->
	PLAN_GENERATION -> IMPLEMENTATION_PLANNING -> ADAPTATION -> COMPLETE

COMPLETE may loop back to ADAPTATION indefinitely (living documentation).
"""

import logging
from enum import Enum
from typing import Iterable, Optional

from ..errors import PhaseTransitionError
from ..session.models import PHASE_ORDER, EventKind, PhaseId, SessionEvent

logger = logging.getLogger(__name__)


class MachineState(str, Enum):
	"""The seven phases plus the terminal state."""
	CONTEXT = "CONTEXT"
	ORCHESTRATION_SETUP = "ORCHESTRATION_SETUP"
	DOC_SCAFFOLD = "DOC_SCAFFOLD"
	RESEARCH = "RESEARCH"
	PLAN_GENERATION = "PLAN_GENERATION"
	IMPLEMENTATION_PLANNING = "IMPLEMENTATION_PLANNING"
	ADAPTATION = "ADAPTATION"
	COMPLETE = "COMPLETE"

	@property
	def phase(self) -> Optional[PhaseId]:
		"""The phase this state runs, or None for COMPLETE."""
		if self is MachineState.COMPLETE:
			return None
		return PhaseId(self.value)

	@classmethod
	def of(cls, phase: PhaseId) -> "MachineState":
		return cls(phase.value)


def successor(phase: PhaseId) -> MachineState:
	"""The state that follows a completed phase."""
	position = phase.position
	if position + 1 < len(PHASE_ORDER):
		return MachineState.of(PHASE_ORDER[position + 1])
	return MachineState.COMPLETE


def _rank(state: MachineState) -> int:
	# COMPLETE ranks after every phase
	return len(PHASE_ORDER) if state.phase is None else state.phase.position


class PhaseStateMachine:
	"""
	Tracks which phase a run is in.

	Usage:
		machine = PhaseStateMachine(context.session_history)
		phase = machine.current_phase          # phase to run next, None when complete
		machine.advance(completed_event)       # after the step's event is persisted
		event = machine.revise(PhaseId.RESEARCH, "new integration")
	"""

	def __init__(self, history: Iterable[SessionEvent] = ()):
		self._state = MachineState.CONTEXT
		for event in history:
			self._replay(event)

	@property
	def state(self) -> MachineState:
		return self._state

	@property
	def current_phase(self) -> Optional[PhaseId]:
		return self._state.phase

	@property
	def is_complete(self) -> bool:
		return self._state is MachineState.COMPLETE

	def _replay(self, event: SessionEvent) -> None:
		if event.kind == EventKind.FAILED:
			return
		if event.kind == EventKind.REVISION:
			self._state = MachineState.of(event.phase)
			return
		if event.phase == self._state.phase:
			self._state = successor(event.phase)
		else:
			logger.warning(
				f"Ignoring completed event for {event.phase.value} while in {self._state.value}"
			)

	def advance(self, event: SessionEvent) -> MachineState:
		"""
		Advance past the current phase once its event has been recorded.

		Raises:
			PhaseTransitionError: If the event does not complete the current phase
		"""
		if self.is_complete:
			raise PhaseTransitionError("Run is complete; revise to ADAPTATION to continue")
		if not event.completes_phase:
			raise PhaseTransitionError(
				f"A {event.kind.value} event cannot advance {self._state.value}"
			)
		if event.phase != self.current_phase:
			raise PhaseTransitionError(
				f"Event for {event.phase.value} cannot advance {self._state.value}"
			)
		previous = self._state
		self._state = successor(event.phase)
		logger.info(f"Phase transition: {previous.value} -> {self._state.value}")
		return self._state

	def can_revise(self, target: PhaseId) -> bool:
		"""Whether target names a phase earlier than the current state."""
		return target.position < _rank(self._state)

	def revise(self, target: PhaseId, reason: str = "") -> SessionEvent:
		"""
		Re-enter an earlier phase.

		The returned revision event must be appended to the session history;
		earlier events are kept untouched.

		Raises:
			PhaseTransitionError: If target is not earlier than the current state
		"""
		if not self.can_revise(target):
			raise PhaseTransitionError(
				f"Cannot revise to {target.value} from {self._state.value}: "
				"only earlier phases can be revisited"
			)
		decisions = [f"revise: re-enter {target.value} from {self._state.value}"]
		if reason:
			decisions.append(f"reason: {reason}")
		event = SessionEvent(phase=target, decisions=decisions, kind=EventKind.REVISION)
		previous = self._state
		self._state = MachineState.of(target)
		logger.info(f"Revision: {previous.value} -> {self._state.value}")
		return event

	def remaining_phases(self) -> list[PhaseId]:
		"""Phases still to run in order, from the current one."""
		if self.is_complete:
			return []
		return PHASE_ORDER[self.current_phase.position:]
