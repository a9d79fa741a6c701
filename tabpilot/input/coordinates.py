import math

from pydantic import BaseModel, ConfigDict

from tabpilot.browser.views import CoordinateFrameError


class CoordinateFrame(BaseModel):
	"""Geometry of the last normalized screenshot.

	capture_* are the native (CSS pixel) dimensions of the tab, canvas_* the
	letterboxed canvas before it was resized to the policy's fixed size, and
	scale_* the canvas / target ratio per axis.
	"""

	model_config = ConfigDict(frozen=True)

	capture_width: int
	capture_height: int
	padding_top: int = 0
	padding_left: int = 0
	scale_x: float = 1.0
	scale_y: float = 1.0
	canvas_width: int | None = None
	canvas_height: int | None = None


def round_half_up(value: float) -> int:
	return math.floor(value + 0.5)


def _clamp(value: float, low: float, high: float) -> float:
	return max(low, min(value, high))


class CoordinateMapper:
	"""Maps policy coordinates (in the normalized screenshot space) back to native tab coordinates."""

	def __init__(self, frame: CoordinateFrame | None = None):
		self._frame = frame

	@property
	def frame(self) -> CoordinateFrame | None:
		return self._frame

	def update(self, frame: CoordinateFrame) -> None:
		self._frame = frame

	def to_native(self, x: float, y: float) -> tuple[int, int]:
		frame = self._frame
		if frame is None:
			raise CoordinateFrameError('No screenshot has been taken yet, cannot map coordinates')

		native_x = _clamp(x * frame.scale_x - frame.padding_left, 0, frame.capture_width - 1)
		native_y = _clamp(y * frame.scale_y - frame.padding_top, 0, frame.capture_height - 1)
		return round_half_up(native_x), round_half_up(native_y)
