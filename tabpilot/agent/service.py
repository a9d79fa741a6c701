import asyncio
import logging

from pydantic import ValidationError
from uuid_extensions import uuid7str

from tabpilot.agent.companion import CompanionChannel
from tabpilot.agent.policy import PolicyProvider
from tabpilot.agent.views import (
	COMPUTER_TOOL_NAME,
	GENERIC_ERROR_MESSAGE,
	ActionResult,
	AgentSettings,
	AgentState,
	CancellationToken,
	CompanionTimeoutError,
	TextBlock,
	ToolUseBlock,
	Trajectory,
	parse_content_blocks,
)
from tabpilot.browser.events import ScreenshotEvent
from tabpilot.browser.session import ProtocolSession
from tabpilot.browser.views import BrowserError
from tabpilot.input.translator import InputTranslator
from tabpilot.input.views import ActionDescriptor, ActionName
from tabpilot.utils import time_execution_async

# Verbs announced to the companion UI before they run
CUED_ACTIONS = {
	ActionName.TYPE.value,
	ActionName.KEY.value,
	ActionName.HOLD_KEY.value,
	ActionName.LEFT_CLICK.value,
	ActionName.DOUBLE_CLICK.value,
	ActionName.TRIPLE_CLICK.value,
	ActionName.RIGHT_CLICK.value,
	ActionName.MIDDLE_CLICK.value,
	ActionName.MOUSE_MOVE.value,
	ActionName.SCROLL.value,
	ActionName.LEFT_CLICK_DRAG.value,
}


class AgentLoop:
	"""Policy -> action -> observation loop driving one ProtocolSession.

	Each step asks the policy for content blocks, forwards text to the companion
	UI, executes the computer tool call and feeds the result (usually a fresh
	screenshot) back as a tool_result. The run ends when the policy answers
	without a tool call, on cancellation, on a terminal error, or after max_steps.
	"""

	def __init__(
		self,
		policy: PolicyProvider,
		session: ProtocolSession,
		companion: CompanionChannel | None = None,
		settings: AgentSettings | None = None,
	):
		self.id = uuid7str()
		self.policy = policy
		self.session = session
		self.companion = companion
		self.settings = settings or AgentSettings()
		self.translator = InputTranslator(session, timings=self.settings.input_timings)
		self.trajectory = Trajectory()
		self.state = AgentState()
		self._cancel_token: CancellationToken | None = None

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'tabpilot.AgentLoop🅐 {self.id[-4:]} on {self.session}')

	# ---- control ----

	def stop(self) -> None:
		"""Request cancellation, honored at the next checkpoint."""
		self.logger.info('⏹️ Agent stopping')
		self.state.stopped = True
		if self._cancel_token is not None:
			self._cancel_token.cancel()

	def reset(self) -> None:
		self.trajectory.reset()
		self.state = AgentState()

	async def set_copilot_mode(self, enabled: bool) -> None:
		"""Hand the tab to the human operator (detaching the debugger) or take it back."""
		if enabled == self.settings.copilot:
			return
		self.settings.copilot = enabled
		if enabled:
			self.logger.info('🧑 Copilot mode on, releasing the tab')
			await self.session.detach()
		else:
			self.logger.info('🤖 Copilot mode off, taking the tab back')
			await self.session.attach()

	# ---- run ----

	@time_execution_async('--run')
	async def run(self, task: str, cancel_token: CancellationToken | None = None) -> AgentState:
		"""Execute the task until the policy stops calling tools or max_steps is reached."""
		self._cancel_token = cancel_token or CancellationToken()
		self.state.stopped = False
		self.state.finished = False
		self.state.error = None
		self.trajectory.append('user', task)
		self.logger.info(f'🚀 Starting task: {task}')

		try:
			for step in range(self.settings.max_steps):
				self.logger.debug(f'🚶 Starting step {step + 1}/{self.settings.max_steps}...')
				if not await self.step():
					break
			else:
				self.logger.warning(f'⚠️ Stopped after reaching max_steps={self.settings.max_steps}')
				self.state.error = f'Reached max_steps={self.settings.max_steps}'
		except InterruptedError:
			self.logger.info('🛑 Agent stopped successfully')
			self.state.stopped = True
			self.trajectory.cleanup_last_action()
		except Exception as e:
			# protocol, companion, policy and parsing failures all end the run
			await self._handle_terminal_error(e)
		finally:
			self._cancel_token = None

		return self.state

	async def _raise_if_cancelled(self) -> None:
		if self._cancel_token is not None:
			self._cancel_token.raise_if_cancelled()

	@time_execution_async('--step')
	async def step(self) -> bool:
		"""Run one policy step. Returns False when the run is complete."""
		await self._raise_if_cancelled()
		self.state.n_steps += 1

		raw_blocks = await self.policy.process(self.trajectory.messages)
		await self._raise_if_cancelled()

		blocks, recorded = parse_content_blocks(raw_blocks)
		self.trajectory.append('assistant', recorded)

		text_block = next((b for b in blocks if isinstance(b, TextBlock)), None)
		tool_use = next((b for b in blocks if isinstance(b, ToolUseBlock)), None)

		if text_block is not None:
			self.logger.info(f'💬 {text_block.text}')
			if self.companion:
				await self.companion.send_text(text_block.text)

		if tool_use is None:
			self.logger.info(f'✅ Task finished after {self.state.n_steps} step(s)')
			self.state.finished = True
			if self.companion:
				await self.companion.finish_run()
			return False

		await self._raise_if_cancelled()

		result = await self._execute_tool_use(tool_use)
		await self._raise_if_cancelled()

		self.state.last_result = result
		self.trajectory.append('user', [result.to_tool_result(tool_use.id)])
		return True

	async def _execute_tool_use(self, tool_use: ToolUseBlock) -> ActionResult:
		if tool_use.name != COMPUTER_TOOL_NAME:
			return ActionResult(kind='text', content=f'Error: unsupported tool "{tool_use.name}"')
		try:
			action = ActionDescriptor.from_tool_input(tool_use.input)
		except (ValueError, ValidationError) as e:
			self.logger.warning(f'⚠️ Invalid tool input {tool_use.input}: {e}')
			return ActionResult(kind='text', content=f'Error: {e}')

		self.logger.info(f'🦾 [ACTION] {action.name} {action.params}')
		if self.settings.copilot:
			return await self.copilot_action(action)
		return await self.send_action(action)

	async def send_action(self, action: ActionDescriptor) -> ActionResult:
		"""Autopilot: perform the action ourselves and observe the result."""
		if action.name == ActionName.SCREENSHOT.value:
			return await self._screenshot_result()

		if self.companion and action.name in CUED_ACTIONS:
			await self.companion.send_autopilot_cue(action)

		result = await self.translator.execute(action)
		if self.companion:
			await self.companion.send_action(action)

		if result.text is not None:
			return ActionResult(kind='text', content=result.text)
		if not result.success:
			self.logger.warning(f'⚠️ {action.name} failed: {result.error}')
			return ActionResult(kind='text', content=f'Error: {result.error}')

		await asyncio.sleep(self.settings.screenshot_delay)
		return await self._screenshot_result()

	async def copilot_action(self, action: ActionDescriptor) -> ActionResult:
		"""Copilot: ask the human to perform the action, then observe the result."""
		if action.name != ActionName.SCREENSHOT.value:
			if self.companion is None:
				raise CompanionTimeoutError('Copilot mode needs a companion UI to hand actions to')
			await self.companion.send_copilot_cue(self._with_native_coordinates(action), timeout=self.settings.cue_timeout)
			await asyncio.sleep(self.settings.screenshot_delay)
		return await self._screenshot_result()

	def _with_native_coordinates(self, action: ActionDescriptor) -> ActionDescriptor:
		# the operator's overlay draws on the real page, so it gets native coordinates too
		if self.session.coordinate_mapper.frame is None:
			return action
		return self.translator.convert_coordinates(action)

	async def _screenshot_result(self) -> ActionResult:
		event = self.session.event_bus.dispatch(ScreenshotEvent())
		try:
			screenshot_b64 = await event.event_result(raise_if_any=True, raise_if_none=True)
		except BrowserError:
			raise
		except Exception as e:
			raise BrowserError(f'Screenshot failed: {type(e).__name__}: {e}') from e
		return ActionResult(kind='image', content=screenshot_b64)

	async def _handle_terminal_error(self, error: Exception) -> None:
		self.logger.error(f'❌ Run halted: {type(error).__name__}: {error}')
		self.state.error = f'{type(error).__name__}: {error}'
		self.trajectory.cleanup_last_action()
		if self.companion:
			await self.companion.error_message(GENERIC_ERROR_MESSAGE)
