"""
Screenshot normalization: every capture is mapped onto one fixed-size canvas the policy reasons about.
"""

import base64
import io

from PIL import Image

from tabpilot.input.coordinates import CoordinateFrame

DEFAULT_TARGET_SIZE = (1024, 768)


def normalize_screenshot(
	screenshot_b64: str,
	device_pixel_ratio: float = 1.0,
	target_size: tuple[int, int] = DEFAULT_TARGET_SIZE,
) -> tuple[str, CoordinateFrame]:
	"""Scale a raw PNG capture to CSS pixels, letterbox it to the target aspect ratio and resize it.

	Wider-than-target captures are padded top and bottom (centered), taller ones on
	the right. Returns the normalized base64 PNG and the CoordinateFrame needed to
	map policy coordinates back to native tab pixels.
	"""
	target_width, target_height = target_size

	with Image.open(io.BytesIO(base64.b64decode(screenshot_b64))) as raw:
		image = raw.convert('RGB')

	# device pixels -> CSS pixels, the unit Input.dispatchMouseEvent expects
	if device_pixel_ratio and device_pixel_ratio != 1:
		native_size = (
			max(1, round(image.width / device_pixel_ratio)),
			max(1, round(image.height / device_pixel_ratio)),
		)
		image = image.resize(native_size, Image.Resampling.LANCZOS)

	width, height = image.size
	target_ratio = target_width / target_height
	if width / height > target_ratio:
		canvas_width, canvas_height = width, round(width / target_ratio)
		padding_top = (canvas_height - height) // 2
	else:
		canvas_width, canvas_height = round(height * target_ratio), height
		padding_top = 0

	canvas = Image.new('RGB', (canvas_width, canvas_height), (0, 0, 0))
	canvas.paste(image, (0, padding_top))
	if canvas.size != target_size:
		canvas = canvas.resize(target_size, Image.Resampling.LANCZOS)

	buffer = io.BytesIO()
	canvas.save(buffer, format='PNG')

	frame = CoordinateFrame(
		capture_width=width,
		capture_height=height,
		padding_top=padding_top,
		padding_left=0,
		scale_x=canvas_width / target_width,
		scale_y=canvas_height / target_height,
		canvas_width=canvas_width,
		canvas_height=canvas_height,
	)
	return base64.b64encode(buffer.getvalue()).decode('utf-8'), frame
