from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from tabpilot.config import CONFIG
from tabpilot.input.views import InputTimings

COMPUTER_TOOL_NAME = 'computer'

GENERIC_ERROR_MESSAGE = 'Something went wrong, please restart the session.'


class CompanionTimeoutError(TimeoutError):
	"""The companion UI did not acknowledge a cue in time."""


class AgentSettings(BaseModel):
	"""Configuration options for the AgentLoop"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	max_steps: int = Field(default_factory=lambda: CONFIG.TABPILOT_MAX_STEPS)
	screenshot_delay: float = Field(default_factory=lambda: CONFIG.TABPILOT_SCREENSHOT_DELAY)
	cue_timeout: float = Field(default_factory=lambda: CONFIG.TABPILOT_CUE_TIMEOUT)
	copilot: bool = Field(default_factory=lambda: CONFIG.TABPILOT_COPILOT)
	input_timings: InputTimings = Field(default_factory=InputTimings)


class AgentState(BaseModel):
	"""Holds all state information for a run"""

	n_steps: int = 0
	stopped: bool = False
	finished: bool = False
	error: str | None = None
	last_result: ActionResult | None = None


# ---- policy content blocks ----


class TextBlock(BaseModel):
	type: Literal['text'] = 'text'
	text: str


class ToolUseBlock(BaseModel):
	type: Literal['tool_use'] = 'tool_use'
	id: str
	name: str
	input: dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[TextBlock | ToolUseBlock, Field(discriminator='type')]

ACTIONABLE_BLOCK_TYPES = ('text', 'tool_use')

_content_block_adapter = TypeAdapter(ContentBlock)


def parse_content_blocks(blocks: list[Any]) -> tuple[list[TextBlock | ToolUseBlock], list[Any]]:
	"""Split a policy reply into the blocks the loop acts on and the reply as it is recorded.

	Accepts models or plain dicts as returned by an LLM client. Text and tool_use
	blocks are validated; any other block (thinking, server tool calls) is kept
	verbatim in the recorded reply because the provider expects it echoed back.
	"""
	actionable: list[TextBlock | ToolUseBlock] = []
	recorded: list[Any] = []
	for block in blocks:
		data = block.model_dump() if isinstance(block, BaseModel) else block
		if isinstance(data, dict) and data.get('type') in ACTIONABLE_BLOCK_TYPES:
			parsed = _content_block_adapter.validate_python(data)
			actionable.append(parsed)
			data = parsed.model_dump()
		recorded.append(data)
	return actionable, recorded


class ActionResult(BaseModel):
	"""What an executed action gives back to the policy"""

	kind: Literal['image', 'text']
	content: str

	def to_tool_result(self, tool_use_id: str) -> dict[str, Any]:
		if self.kind == 'image':
			content: list[dict[str, Any]] = [
				{'type': 'image', 'source': {'type': 'base64', 'media_type': 'image/png', 'data': self.content}}
			]
		else:
			content = [{'type': 'text', 'text': self.content}]
		return {'type': 'tool_result', 'tool_use_id': tool_use_id, 'content': content}


# ---- conversation ----


class Trajectory:
	"""Ordered conversation between the user, the policy and tool results."""

	def __init__(self):
		self._messages: list[dict[str, Any]] = []

	@property
	def messages(self) -> list[dict[str, Any]]:
		return list(self._messages)

	def __len__(self) -> int:
		return len(self._messages)

	def append(self, role: Literal['user', 'assistant'], content: str | list[Any]) -> None:
		self._messages.append({'role': role, 'content': content})

	def reset(self) -> None:
		self._messages.clear()

	def cleanup_last_action(self) -> None:
		"""Drop an in-flight tool call so the next policy request is well formed.

		Removes computer tool_use blocks from the last assistant message (and the
		message itself if nothing else is left in it).
		"""
		if not self._messages:
			return
		last = self._messages[-1]
		if last['role'] != 'assistant' or not isinstance(last['content'], list):
			return

		kept = [
			block
			for block in last['content']
			if not (_block_type(block) == 'tool_use' and _block_name(block) == COMPUTER_TOOL_NAME)
		]
		if kept:
			last['content'] = kept
		else:
			self._messages.pop()


def _block_type(block: Any) -> str | None:
	return block.get('type') if isinstance(block, dict) else getattr(block, 'type', None)


def _block_name(block: Any) -> str | None:
	return block.get('name') if isinstance(block, dict) else getattr(block, 'name', None)


# ---- cancellation ----


class CancellationToken:
	"""Cooperative cancellation flag checked by the AgentLoop between suspension points."""

	def __init__(self):
		self._cancelled = False

	@property
	def cancelled(self) -> bool:
		return self._cancelled

	def cancel(self) -> None:
		self._cancelled = True

	def raise_if_cancelled(self) -> None:
		if self._cancelled:
			raise InterruptedError


AgentState.model_rebuild()
