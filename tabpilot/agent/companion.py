"""Communication with the companion UI that shows the run to a human."""

from abc import ABC, abstractmethod
from typing import Any

from bubus import EventBus

from tabpilot.agent.views import CompanionTimeoutError
from tabpilot.browser.events import AgentMessageEvent, AutopilotCueEvent, CopilotCueEvent, CopilotDoneEvent
from tabpilot.input.views import ActionDescriptor


class CompanionChannel(ABC):
	@abstractmethod
	async def send_text(self, text: str) -> None: ...

	@abstractmethod
	async def send_action(self, action: ActionDescriptor) -> None: ...

	@abstractmethod
	async def finish_run(self) -> None: ...

	@abstractmethod
	async def error_message(self, message: str) -> None: ...

	@abstractmethod
	async def send_autopilot_cue(self, action: ActionDescriptor) -> bool:
		"""Announce an action the agent is about to perform. Returns whether the UI acknowledged it."""

	@abstractmethod
	async def send_copilot_cue(self, action: ActionDescriptor, timeout: float) -> None:
		"""Ask the human to perform the action and wait until they report it done.

		Raises CompanionTimeoutError if no acknowledgement arrives within `timeout` seconds.
		"""


class EventBusCompanion(CompanionChannel):
	"""CompanionChannel that talks to the UI through events on a bubus EventBus."""

	def __init__(self, event_bus: EventBus):
		self.event_bus = event_bus

	async def _message(self, type: str, content: str = '', action: dict[str, Any] | None = None) -> None:
		self.event_bus.dispatch(AgentMessageEvent(type=type, content=content, action=action))

	async def send_text(self, text: str) -> None:
		await self._message('text', content=text)

	async def send_action(self, action: ActionDescriptor) -> None:
		await self._message('action', content=action.name, action=action.to_tool_input())

	async def finish_run(self) -> None:
		await self._message('finish')

	async def error_message(self, message: str) -> None:
		await self._message('error', content=message)

	async def send_autopilot_cue(self, action: ActionDescriptor) -> bool:
		event = self.event_bus.dispatch(AutopilotCueEvent(action=action.to_tool_input()))
		acked = await event.event_result(raise_if_none=False, raise_if_any=False)
		# no UI listening counts as acknowledged
		return acked is not False

	async def send_copilot_cue(self, action: ActionDescriptor, timeout: float) -> None:
		self.event_bus.dispatch(CopilotCueEvent(action=action.to_tool_input(), action_name=action.name))
		try:
			await self.event_bus.expect(
				CopilotDoneEvent,
				predicate=lambda e: e.action_name == action.name,
				timeout=timeout,
			)
		except TimeoutError as e:
			raise CompanionTimeoutError(f'Action timed out after {timeout:g} seconds') from e
