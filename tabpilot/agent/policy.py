from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from uuid_extensions import uuid7str

from tabpilot.agent.views import COMPUTER_TOOL_NAME, TextBlock, ToolUseBlock


class PolicyProvider(ABC):
	"""Decides the next step: given the conversation so far, return the assistant's content blocks."""

	@abstractmethod
	async def process(self, messages: list[dict[str, Any]]) -> list[Any]: ...


class ScriptedPolicy(PolicyProvider):
	"""Replays a fixed list of steps, each step being a list of content blocks.

	Once the script is exhausted it answers with a final text block, which ends the run.
	"""

	def __init__(self, steps: Iterable[list[Any]], final_text: str = 'Done.'):
		self._steps = list(steps)
		self._index = 0
		self.final_text = final_text
		self.received: list[list[dict[str, Any]]] = []

	@classmethod
	def from_actions(cls, actions: Iterable[dict[str, Any]], final_text: str = 'Done.') -> 'ScriptedPolicy':
		"""One computer tool call per step, e.g. [{'action': 'left_click', 'coordinate': [10, 20]}]"""
		steps = [[ToolUseBlock(id=f'toolu_{uuid7str()[-12:]}', name=COMPUTER_TOOL_NAME, input=action)] for action in actions]
		return cls(steps, final_text=final_text)

	async def process(self, messages: list[dict[str, Any]]) -> list[Any]:
		self.received.append(messages)
		if self._index >= len(self._steps):
			return [TextBlock(text=self.final_text)]
		step = self._steps[self._index]
		self._index += 1
		return step
