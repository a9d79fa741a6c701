from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionName(str, Enum):
	LEFT_CLICK = 'left_click'
	RIGHT_CLICK = 'right_click'
	MIDDLE_CLICK = 'middle_click'
	DOUBLE_CLICK = 'double_click'
	TRIPLE_CLICK = 'triple_click'
	MOUSE_MOVE = 'mouse_move'
	LEFT_CLICK_DRAG = 'left_click_drag'
	LEFT_MOUSE_DOWN = 'left_mouse_down'
	LEFT_MOUSE_UP = 'left_mouse_up'
	SCROLL = 'scroll'
	TYPE = 'type'
	KEY = 'key'
	HOLD_KEY = 'hold_key'
	WAIT = 'wait'
	CURSOR_POSITION = 'cursor_position'
	SCREENSHOT = 'screenshot'


# Verbs whose coordinate params are in screenshot space and must be mapped before dispatch
COORDINATE_ACTIONS = {
	action.value
	for action in (
		ActionName.LEFT_CLICK,
		ActionName.RIGHT_CLICK,
		ActionName.MIDDLE_CLICK,
		ActionName.DOUBLE_CLICK,
		ActionName.TRIPLE_CLICK,
		ActionName.MOUSE_MOVE,
		ActionName.SCROLL,
		ActionName.LEFT_CLICK_DRAG,
	)
}


class ActionDescriptor(BaseModel):
	"""One UI action requested by the policy, e.g. left_click at [512, 384]"""

	model_config = ConfigDict(frozen=True)

	name: str
	params: dict[str, Any] = Field(default_factory=dict)

	@classmethod
	def from_tool_input(cls, tool_input: dict[str, Any]) -> 'ActionDescriptor':
		"""Build from a computer-use tool invocation: {'action': 'left_click', 'coordinate': [x, y], ...}"""
		if not isinstance(tool_input, dict) or 'action' not in tool_input:
			raise ValueError("Input must contain an 'action' field")
		params = {k: v for k, v in tool_input.items() if k != 'action'}
		return cls(name=str(tool_input['action']), params=params)

	def with_params(self, **changes: Any) -> 'ActionDescriptor':
		"""Derived copy with some params replaced, the original is left untouched."""
		return ActionDescriptor(name=self.name, params={**self.params, **changes})

	def to_tool_input(self) -> dict[str, Any]:
		return {'action': self.name, **self.params}


class InputResult(BaseModel):
	success: bool = True
	error: str | None = None
	# advisory text for verbs that answer with text instead of a screenshot
	text: str | None = None


class InputTimings(BaseModel):
	"""Pauses between synthesized input events, in seconds"""

	click_hold: float = 0.05
	double_click_gap: float = 0.15
	triple_click_gap: float = 0.1
	drag_start_hold: float = 0.05
	drag_step_delay: float = 0.02
	drag_steps: int = 10
	scroll_delta: int = 100
	scroll_step_delay: float = 0.05
	hold_key_initial_delay: float = 0.5
	hold_key_repeat_interval: float = 0.04

	@classmethod
	def instant(cls) -> 'InputTimings':
		"""Zero the pauses between mouse events, useful in tests. Key hold timing is part of the semantics and kept."""
		return cls(
			click_hold=0,
			double_click_gap=0,
			triple_click_gap=0,
			drag_start_hold=0,
			drag_step_delay=0,
			scroll_step_delay=0,
		)
