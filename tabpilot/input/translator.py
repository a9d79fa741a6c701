"""Translate abstract UI actions into Input.* protocol calls on a ProtocolSession."""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from tabpilot.browser.views import CoordinateFrameError
from tabpilot.input.keys import KeyCombo, KeyDescriptor, parse_key_combo
from tabpilot.input.views import COORDINATE_ACTIONS, ActionDescriptor, ActionName, InputResult, InputTimings
from tabpilot.utils import time_execution_async

if TYPE_CHECKING:
	from tabpilot.browser.session import ProtocolSession

CURSOR_POSITION_TEXT = (
	'X=0, Y=0; Note that you are operating on a web browser. '
	'Your cursor should be at the last action you performed with coordinates'
)
MOUSE_DOWN_UP_TEXT = (
	'This method is not allowed in the browser since you do not have the cursor position. '
	"If you'd like to press down the cursor and then move in any direction, consider simply clicking on the "
	"required position, then using the 'scroll' method to move in the spreadsheet or app."
)

SCROLL_DIRECTIONS = {
	'up': (0, -1),
	'down': (0, 1),
	'left': (-1, 0),
	'right': (1, 0),
}


def _point(value: Any) -> tuple[float, float] | None:
	if not isinstance(value, (list, tuple)) or len(value) != 2:
		return None
	x, y = value
	if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
		return None
	return x, y


class InputTranslator:
	"""Executes one ActionDescriptor at a time against a ProtocolSession.

	Coordinates are mapped through the session's CoordinateMapper into a derived
	copy of the action, then the whole event sequence for the verb runs as a
	single operation on the session's ActionQueue so sequences never interleave.

	Validation problems (missing coordinate, bad direction) come back as
	InputResult(success=False). Protocol failures raise BrowserError subclasses.
	"""

	def __init__(self, session: 'ProtocolSession', timings: InputTimings | None = None):
		self.session = session
		self.timings = timings or InputTimings()
		self._handlers: dict[str, Callable[[ActionDescriptor], Awaitable[InputResult]]] = {
			ActionName.LEFT_CLICK.value: lambda a: self._click(a, 'left'),
			ActionName.RIGHT_CLICK.value: lambda a: self._click(a, 'right'),
			ActionName.MIDDLE_CLICK.value: lambda a: self._click(a, 'middle'),
			ActionName.DOUBLE_CLICK.value: self._double_click,
			ActionName.TRIPLE_CLICK.value: self._triple_click,
			ActionName.MOUSE_MOVE.value: self._mouse_move,
			ActionName.LEFT_CLICK_DRAG.value: self._left_click_drag,
			ActionName.SCROLL.value: self._scroll,
			ActionName.TYPE.value: self._type,
			ActionName.KEY.value: self._key,
			ActionName.HOLD_KEY.value: self._hold_key,
			ActionName.WAIT.value: self._wait,
			ActionName.CURSOR_POSITION.value: self._cursor_position,
			ActionName.LEFT_MOUSE_DOWN.value: self._mouse_down_up,
			ActionName.LEFT_MOUSE_UP.value: self._mouse_down_up,
		}

	@property
	def logger(self) -> logging.Logger:
		return self.session.logger

	@time_execution_async('--execute_action')
	async def execute(self, action: ActionDescriptor) -> InputResult:
		handler = self._handlers.get(action.name)
		if handler is None:
			self.logger.info(f'🤷 Unknown action "{action.name}", nothing to do')
			return InputResult(success=True)

		try:
			native_action = self.convert_coordinates(action)
		except CoordinateFrameError as e:
			return InputResult(success=False, error=str(e))

		self.logger.debug(f'🖱️ {action.name} {native_action.params}')
		return await handler(native_action)

	def convert_coordinates(self, action: ActionDescriptor) -> ActionDescriptor:
		"""Return a copy of the action with coordinates mapped to native tab pixels."""
		if action.name not in COORDINATE_ACTIONS:
			return action

		changes = {}
		for param in ('coordinate', 'start_coordinate'):
			point = _point(action.params.get(param))
			if point is not None:
				changes[param] = list(self.session.coordinate_mapper.to_native(*point))
		return action.with_params(**changes) if changes else action

	# ---- protocol helpers ----

	async def _mouse(self, event_type: str, x: int, y: int, **params: Any) -> None:
		await self.session.execute_command(
			'Input.dispatchMouseEvent',
			{'type': event_type, 'x': x, 'y': y, **params},
		)

	async def _key_event(self, event_type: str, key: KeyDescriptor, modifiers: int, **params: Any) -> None:
		await self.session.execute_command(
			'Input.dispatchKeyEvent',
			{
				'type': event_type,
				'modifiers': modifiers,
				'windowsVirtualKeyCode': key.key_code,
				'code': key.code,
				'key': key.key,
				**params,
			},
		)

	async def _char_event(self, key: KeyDescriptor, modifiers: int) -> None:
		await self.session.execute_command(
			'Input.dispatchKeyEvent',
			{'type': 'char', 'modifiers': modifiers, 'text': key.text, 'key': key.key},
		)

	async def _press_release(self, x: int, y: int, button: str, click_count: int, hold: float = 0) -> None:
		await self._mouse('mousePressed', x, y, button=button, clickCount=click_count)
		if hold:
			await asyncio.sleep(hold)
		await self._mouse('mouseReleased', x, y, button=button, clickCount=click_count)

	# ---- mouse ----

	async def _click(self, action: ActionDescriptor, button: str) -> InputResult:
		point = _point(action.params.get('coordinate'))
		if point is None:
			return InputResult(success=False, error=f'{action.name} requires a coordinate [x, y]')
		x, y = point

		async def operation():
			await self._press_release(x, y, button, 1, hold=self.timings.click_hold)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _double_click(self, action: ActionDescriptor) -> InputResult:
		point = _point(action.params.get('coordinate'))
		if point is None:
			return InputResult(success=False, error='double_click requires a coordinate [x, y]')
		x, y = point

		async def operation():
			await self._press_release(x, y, 'left', 1)
			await asyncio.sleep(self.timings.double_click_gap)
			await self._press_release(x, y, 'left', 2)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _triple_click(self, action: ActionDescriptor) -> InputResult:
		point = _point(action.params.get('coordinate'))
		if point is None:
			return InputResult(success=False, error='triple_click requires a coordinate [x, y]')
		x, y = point

		async def operation():
			for click_count in (1, 2, 3):
				await self._press_release(x, y, 'left', click_count)
				if click_count < 3:
					await asyncio.sleep(self.timings.triple_click_gap)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _mouse_move(self, action: ActionDescriptor) -> InputResult:
		point = _point(action.params.get('coordinate'))
		if point is None:
			return InputResult(success=False, error='mouse_move requires a coordinate [x, y]')
		x, y = point

		async def operation():
			await self._mouse('mouseMoved', x, y, button='none', clickCount=0)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _left_click_drag(self, action: ActionDescriptor) -> InputResult:
		start = _point(action.params.get('start_coordinate'))
		end = _point(action.params.get('coordinate'))
		if start is None or end is None:
			return InputResult(success=False, error='left_click_drag requires start_coordinate and coordinate [x, y]')
		(start_x, start_y), (end_x, end_y) = start, end
		steps = max(1, self.timings.drag_steps)

		async def operation():
			await self._mouse('mousePressed', start_x, start_y, button='left', clickCount=1)
			await asyncio.sleep(self.timings.drag_start_hold)
			for i in range(1, steps + 1):
				x = round(start_x + (end_x - start_x) * i / steps)
				y = round(start_y + (end_y - start_y) * i / steps)
				await self._mouse('mouseMoved', x, y, button='left')
				await asyncio.sleep(self.timings.drag_step_delay)
			await self._mouse('mouseReleased', end_x, end_y, button='left', clickCount=1)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _scroll(self, action: ActionDescriptor) -> InputResult:
		point = _point(action.params.get('coordinate'))
		if point is None:
			return InputResult(success=False, error='scroll requires a coordinate [x, y]')
		direction = action.params.get('scroll_direction')
		if direction not in SCROLL_DIRECTIONS:
			return InputResult(
				success=False, error=f'Invalid scroll direction: {direction}. Must be up, down, left, or right.'
			)
		amount = action.params.get('scroll_amount', 1)
		if not isinstance(amount, int) or isinstance(amount, bool) or amount < 1:
			return InputResult(success=False, error=f'Invalid scroll_amount: {amount}. Must be a positive integer.')

		x, y = point
		unit_x, unit_y = SCROLL_DIRECTIONS[direction]
		total_x = unit_x * self.timings.scroll_delta * amount
		total_y = unit_y * self.timings.scroll_delta * amount

		async def operation():
			for i in range(amount):
				await self._mouse('mouseWheel', x, y, deltaX=total_x / amount, deltaY=total_y / amount)
				if i < amount - 1:
					await asyncio.sleep(self.timings.scroll_step_delay)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	# ---- keyboard ----

	async def _type(self, action: ActionDescriptor) -> InputResult:
		text = action.params.get('text')
		if not isinstance(text, str) or not text:
			return InputResult(success=False, error='type requires non-empty text')

		async def operation():
			await self.session.execute_command('Input.insertText', {'text': text})

		await self.session.queue_action(operation)
		return InputResult(success=True)

	def _parse_combo(self, action: ActionDescriptor) -> KeyCombo | InputResult:
		text = action.params.get('text')
		if not isinstance(text, str) or not text.strip():
			return InputResult(success=False, error=f'{action.name} requires a key combo in text, e.g. "ctrl+c"')
		combo = parse_key_combo(text)
		if not combo.keys:
			return InputResult(success=False, error=f'No known keys in "{text}"')
		if len(combo.main_keys) > 1:
			self.logger.debug(f'⌨️ "{text}" has several non-modifier keys, only {combo.main_key.key!r} is pressed')
		return combo

	async def _key(self, action: ActionDescriptor) -> InputResult:
		combo = self._parse_combo(action)
		if isinstance(combo, InputResult):
			return combo

		async def operation():
			await self._press_combo(combo, hold=None)

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _hold_key(self, action: ActionDescriptor) -> InputResult:
		combo = self._parse_combo(action)
		if isinstance(combo, InputResult):
			return combo
		duration = action.params.get('duration') or 1
		if not isinstance(duration, (int, float)) or duration < 0:
			return InputResult(success=False, error=f'Invalid duration: {duration}')

		async def operation():
			await self._press_combo(combo, hold=float(duration))

		await self.session.queue_action(operation)
		return InputResult(success=True)

	async def _press_combo(self, combo: KeyCombo, hold: float | None) -> None:
		mask = combo.modifier_mask
		modifiers = combo.modifiers
		main_key = combo.main_key

		for key in modifiers:
			await self._key_event('keyDown', key, mask)

		if main_key is None:
			if hold:
				await asyncio.sleep(hold)
		else:
			await self._key_event('keyDown', main_key, mask)
			if main_key.is_printable and mask == 0:
				await self._char_event(main_key, mask)
			if hold:
				await self._auto_repeat(main_key, mask, hold)
			await self._key_event('keyUp', main_key, mask)

		for key in reversed(modifiers):
			await self._key_event('keyUp', key, mask)

	async def _auto_repeat(self, key: KeyDescriptor, mask: int, duration: float) -> None:
		"""Keep a key held down, sending auto-repeat keyDowns like a real keyboard would."""
		initial_delay = self.timings.hold_key_initial_delay
		interval = self.timings.hold_key_repeat_interval
		if duration <= initial_delay:
			await asyncio.sleep(duration)
			return

		await asyncio.sleep(initial_delay)
		remaining = duration - initial_delay
		repeats = math.floor(remaining / interval)
		for i in range(repeats):
			await self._key_event('keyDown', key, mask, autoRepeat=True)
			if key.is_printable and mask == 0:
				await self._char_event(key, mask)
			if i < repeats - 1:
				await asyncio.sleep(interval)
		await asyncio.sleep(remaining % interval)

	# ---- no input events ----

	async def _wait(self, action: ActionDescriptor) -> InputResult:
		duration = action.params.get('duration', 1)
		if not isinstance(duration, (int, float)) or duration < 0:
			return InputResult(success=False, error=f'Invalid duration: {duration}')
		# the policy tends to overestimate, wait half as long
		await asyncio.sleep(duration / 2)
		return InputResult(success=True)

	async def _cursor_position(self, action: ActionDescriptor) -> InputResult:
		return InputResult(success=True, text=CURSOR_POSITION_TEXT)

	async def _mouse_down_up(self, action: ActionDescriptor) -> InputResult:
		return InputResult(success=True, text=MOUSE_DOWN_UP_TEXT)
