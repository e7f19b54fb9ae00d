"""
Dispatcher - fan-out/fan-in of dispatch instructions.

Instructions run concurrently, but each one first takes agent_count slots
from a shared AgentCapacity, so the number of helper agents working at
once never exceeds the ceiling. Individual failures do not abort the
batch; they come back as failed results.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..engine.allocation import MAX_AGENTS
from .collaborators import DispatchInstruction, DispatchResult, ExecutionCollaborator

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
	"""Status of a dispatch batch."""
	COMPLETED = "completed"
	PARTIAL_FAILURE = "partial_failure"
	FAILED = "failed"


@dataclass
class DispatchOutcome:
	"""Result of running a single instruction."""
	instruction: DispatchInstruction
	result: DispatchResult

	@property
	def task_id(self) -> str:
		return self.instruction.task_id


@dataclass
class DispatchSummary:
	"""Summary of a completed dispatch batch."""
	status: DispatchStatus
	total: int
	succeeded: int
	failed: int
	outcomes: list[DispatchOutcome] = field(default_factory=list)

	@property
	def tokens_used(self) -> int:
		return sum(o.result.tokens_used for o in self.outcomes)

	@property
	def failures(self) -> list[DispatchOutcome]:
		return [o for o in self.outcomes if not o.result.success]


class AgentCapacity:
	"""
	Counting pool of helper-agent slots.

	A request for more slots than the pool holds is reduced to the pool
	size, so a single instruction can always run on an idle pool.
	"""

	def __init__(self, slots: int = MAX_AGENTS):
		self.slots = max(1, min(slots, MAX_AGENTS))
		self._available = self.slots
		self._condition = asyncio.Condition()

	@property
	def available(self) -> int:
		return self._available

	@property
	def in_use(self) -> int:
		return self.slots - self.available

	@asynccontextmanager
	async def acquire(self, count: int) -> AsyncIterator[int]:
		"""Hold count slots for the duration of the block."""
		wanted = max(1, min(count, self.slots))
		async with self._condition:
			await self._condition.wait_for(lambda: self._available >= wanted)
			self._available -= wanted
		try:
			yield wanted
		finally:
			async with self._condition:
				self._available += wanted
				self._condition.notify_all()


class Dispatcher:
	"""
	Sends dispatch instructions to the execution collaborator.

	Usage:
		dispatcher = Dispatcher(AgentCapacity(config.max_agents))
		summary = await dispatcher.execute(instructions, executor)
	"""

	def __init__(self, capacity: Optional[AgentCapacity] = None):
		self.capacity = capacity or AgentCapacity()

	async def execute(
		self,
		instructions: list[DispatchInstruction],
		executor: ExecutionCollaborator,
		on_result: Optional[Callable[[DispatchOutcome], Awaitable[None]]] = None,
	) -> DispatchSummary:
		"""
		Run every instruction through the executor.

		Args:
			instructions: Instructions for allocated leaf tasks
			executor: Execution collaborator
			on_result: Optional callback after each instruction completes

		Returns:
			DispatchSummary with one outcome per instruction, in input order
		"""
		if not instructions:
			return DispatchSummary(
				status=DispatchStatus.COMPLETED,
				total=0,
				succeeded=0,
				failed=0,
			)

		async def run_one(instruction: DispatchInstruction) -> DispatchOutcome:
			async with self.capacity.acquire(instruction.agent_count) as slots:
				logger.debug(
					f"Dispatching {instruction.task_id} with {slots} agent(s), "
					f"{self.capacity.in_use}/{self.capacity.slots} slots in use"
				)
				try:
					result = await executor.execute(instruction)
				except Exception as e:
					logger.warning(f"Dispatch of {instruction.task_id} failed: {e}")
					result = DispatchResult(success=False, error=str(e))

			outcome = DispatchOutcome(instruction=instruction, result=result)
			if on_result:
				try:
					await on_result(outcome)
				except Exception as e:
					logger.warning(f"on_result callback failed for {instruction.task_id}: {e}")
			return outcome

		# Fan out
		outcomes = await asyncio.gather(*(run_one(i) for i in instructions))

		# Fan in
		succeeded = sum(1 for o in outcomes if o.result.success)
		failed = len(outcomes) - succeeded

		if failed == 0:
			status = DispatchStatus.COMPLETED
		elif succeeded == 0:
			status = DispatchStatus.FAILED
		else:
			status = DispatchStatus.PARTIAL_FAILURE

		return DispatchSummary(
			status=status,
			total=len(instructions),
			succeeded=succeeded,
			failed=failed,
			outcomes=list(outcomes),
		)
