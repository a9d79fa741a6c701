"""Screenshot watchdog for handling screenshot requests using CDP."""

import asyncio
from typing import ClassVar

from bubus import BaseEvent

from tabpilot.browser.events import ScreenshotEvent
from tabpilot.browser.views import BrowserError, TargetLostError
from tabpilot.browser.watchdog_base import BaseWatchdog
from tabpilot.config import CONFIG
from tabpilot.screenshots.service import normalize_screenshot
from tabpilot.utils import time_execution_async


class ScreenshotWatchdog(BaseWatchdog):
	"""Captures the tab, normalizes the image and refreshes the session's capture frame."""

	LISTENS_TO: ClassVar[list[type[BaseEvent]]] = [ScreenshotEvent]
	EMITS: ClassVar[list[type[BaseEvent]]] = []

	capture_retries: int = 5
	capture_retry_delay: float = 0.5

	@time_execution_async('--screenshot_event_handler')
	async def on_ScreenshotEvent(self, event: ScreenshotEvent) -> str:
		"""Returns the normalized screenshot as base64 PNG."""
		raw_b64 = await self._capture()
		device_pixel_ratio = await self._device_pixel_ratio()
		target_size = (CONFIG.TABPILOT_CANVAS_WIDTH, CONFIG.TABPILOT_CANVAS_HEIGHT)

		screenshot_b64, frame = normalize_screenshot(raw_b64, device_pixel_ratio, target_size)
		self.session.coordinate_mapper.update(frame)
		self.logger.debug(
			f'📸 Captured {frame.capture_width}x{frame.capture_height} (dpr={device_pixel_ratio}, pad_top={frame.padding_top})'
		)
		return screenshot_b64

	async def _capture(self) -> str:
		last_error: Exception | None = None
		for attempt in range(self.capture_retries):
			try:
				result = await self.session.queue_action(
					lambda: self.session.execute_command('Page.captureScreenshot', {'format': 'png'})
				)
				if result and result.get('data'):
					return result['data']
				last_error = BrowserError('Screenshot result missing data')
			except TargetLostError:
				raise
			except BrowserError as e:
				last_error = e

			self.logger.debug(f'📸 Capture attempt {attempt + 1}/{self.capture_retries} failed: {last_error}')
			if attempt < self.capture_retries - 1:
				await asyncio.sleep(self.capture_retry_delay)

		raise BrowserError(f'Failed to capture screenshot after {self.capture_retries} attempts: {last_error}')

	async def _device_pixel_ratio(self) -> float:
		try:
			result = await self.session.queue_action(
				lambda: self.session.execute_command(
					'Runtime.evaluate', {'expression': 'window.devicePixelRatio', 'returnByValue': True}, retry_count=0
				)
			)
			value = result.get('result', {}).get('value')
			if isinstance(value, (int, float)) and value > 0:
				return float(value)
		except BrowserError as e:
			self.logger.debug(f'Could not read devicePixelRatio, using default: {type(e).__name__}: {e}')
		return CONFIG.TABPILOT_DEFAULT_DPR
