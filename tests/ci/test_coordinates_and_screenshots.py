"""Tests for screenshot normalization and mapping policy coordinates back to the tab."""

import base64
import io

import pytest
from PIL import Image

from tabpilot.browser.views import CoordinateFrameError
from tabpilot.input.coordinates import CoordinateFrame, CoordinateMapper, round_half_up
from tabpilot.screenshots.service import normalize_screenshot
from tests.ci.conftest import make_png_b64


def _decode(screenshot_b64: str) -> Image.Image:
	image = Image.open(io.BytesIO(base64.b64decode(screenshot_b64)))
	image.load()
	return image.convert('RGB')


class TestCoordinateMapper:
	def test_scale_and_padding(self):
		mapper = CoordinateMapper(CoordinateFrame(capture_width=2048, capture_height=1400, padding_top=100, scale_x=2, scale_y=2))
		assert mapper.to_native(512, 400) == (1024, 700)

	def test_results_are_clamped_to_capture(self):
		mapper = CoordinateMapper(CoordinateFrame(capture_width=800, capture_height=600, padding_top=50, scale_x=1, scale_y=1))
		assert mapper.to_native(-10, 10) == (0, 0)
		assert mapper.to_native(5000, 5000) == (799, 599)

	def test_rounds_half_up(self):
		mapper = CoordinateMapper(CoordinateFrame(capture_width=100, capture_height=100, scale_x=1.5, scale_y=1.5))
		assert mapper.to_native(1, 3) == (2, 5)
		assert round_half_up(2.5) == 3
		assert round_half_up(2.49) == 2

	def test_no_frame_raises(self):
		with pytest.raises(CoordinateFrameError):
			CoordinateMapper().to_native(10, 10)

	def test_update_replaces_frame(self, identity_frame):
		mapper = CoordinateMapper()
		mapper.update(identity_frame)
		assert mapper.frame == identity_frame
		assert mapper.to_native(100, 200) == (100, 200)


class TestNormalizeScreenshot:
	def test_wide_capture_is_letterboxed_top_and_bottom(self):
		screenshot_b64, frame = normalize_screenshot(make_png_b64(1280, 800), 1.0, (1024, 768))

		assert (frame.capture_width, frame.capture_height) == (1280, 800)
		assert (frame.canvas_width, frame.canvas_height) == (1280, 960)
		assert frame.padding_top == 80
		assert frame.scale_x == pytest.approx(1.25)
		assert frame.scale_y == pytest.approx(1.25)

		image = _decode(screenshot_b64)
		assert image.size == (1024, 768)
		assert image.getpixel((512, 5)) == (0, 0, 0)
		assert image.getpixel((512, 384)) == (255, 255, 255)

	def test_tall_capture_is_padded_on_the_right(self):
		screenshot_b64, frame = normalize_screenshot(make_png_b64(600, 900), 1.0, (1024, 768))

		assert frame.padding_top == 0
		assert (frame.canvas_width, frame.canvas_height) == (1200, 900)
		assert frame.scale_x == pytest.approx(frame.scale_y)

		image = _decode(screenshot_b64)
		assert image.size == (1024, 768)
		assert image.getpixel((100, 384)) == (255, 255, 255)
		assert image.getpixel((1000, 384)) == (0, 0, 0)

	def test_device_pixel_ratio_is_undone(self):
		_, frame = normalize_screenshot(make_png_b64(2560, 1600), 2.0, (1024, 768))
		assert (frame.capture_width, frame.capture_height) == (1280, 800)
		assert frame.padding_top == 80

	def test_exact_aspect_ratio_needs_no_padding(self):
		_, frame = normalize_screenshot(make_png_b64(1024, 768), 1.0, (1024, 768))
		assert frame.padding_top == 0
		assert frame.scale_x == 1
		assert frame.scale_y == 1

	def test_frame_maps_back_to_native_pixels(self):
		_, frame = normalize_screenshot(make_png_b64(1280, 800), 1.0, (1024, 768))
		mapper = CoordinateMapper(frame)

		assert mapper.to_native(512, 384) == (640, 400)
		# a click on the top letterbox band lands on the first row
		assert mapper.to_native(512, 10) == (640, 0)
