import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class QueuedOperation:
	operation: Operation
	future: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


class ActionQueue:
	"""Runs protocol operations strictly one at a time, in submission order.

	A failing operation rejects only its own caller. Cancelling the caller does not
	cancel the operation, which still runs to completion before the next one starts.
	"""

	def __init__(self, name: str = 'ActionQueue'):
		self.name = name
		self._pending: deque[QueuedOperation] = deque()
		self._is_processing = False
		self._current_task: asyncio.Task | None = None

	@property
	def is_processing(self) -> bool:
		return self._is_processing

	def __len__(self) -> int:
		return len(self._pending)

	async def enqueue(self, operation: Operation) -> Any:
		item = QueuedOperation(operation=operation)
		self._pending.append(item)
		# check-and-set happens before the first await so two callers can never both start
		if not self._is_processing:
			self._is_processing = True
			self._start_next()
		return await asyncio.shield(item.future)

	def _start_next(self) -> None:
		if not self._pending:
			self._is_processing = False
			self._current_task = None
			return
		item = self._pending.popleft()
		self._current_task = asyncio.create_task(self._run(item), name=f'{self.name}.run')

	async def _run(self, item: QueuedOperation) -> None:
		try:
			result = await item.operation()
		except asyncio.CancelledError:
			if not item.future.done():
				item.future.cancel()
			raise
		except Exception as e:
			logger.debug(f'⚠️ [{self.name}] operation failed: {type(e).__name__}: {e}')
			if not item.future.done():
				item.future.set_exception(e)
		else:
			if not item.future.done():
				item.future.set_result(result)
		finally:
			self._start_next()

	async def drain(self) -> None:
		"""Wait until every queued operation has settled."""
		while self._is_processing and self._current_task is not None:
			await asyncio.wait({self._current_task})
