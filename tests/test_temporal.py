import tempfile
import unittest
from pathlib import Path

import numpy as np
from PIL import Image

import temporal
from motion import MotionField


def field(dx=0.0, dy=0.0, confidence=1.0, width=4, height=4):
    return MotionField(
        avg_motion_x=dx,
        avg_motion_y=dy,
        max_motion=float(np.hypot(dx, dy)),
        confidence=confidence,
        frame_width=width,
        frame_height=height,
    )


class TestMotionOffset(unittest.TestCase):
    def test_rounds_half_up(self):
        self.assertEqual(temporal.motion_offset(1.5), 2)
        self.assertEqual(temporal.motion_offset(1.49), 1)
        self.assertEqual(temporal.motion_offset(-0.5), 0)
        self.assertEqual(temporal.motion_offset(-1.5), -1)


class TestBlendFrames(unittest.TestCase):
    def setUp(self):
        self.current = np.full((4, 4, 3), 10, dtype=np.uint8)
        self.previous = np.full((4, 4, 3), 200, dtype=np.uint8)

    def test_zero_blend_leaves_frame_unchanged(self):
        output = temporal.blend_frames(self.current, self.previous, field(), 0.0)
        np.testing.assert_array_equal(output, self.current)

    def test_zero_confidence_leaves_frame_unchanged(self):
        output = temporal.blend_frames(self.current, self.previous, field(confidence=0.0), 0.8)
        np.testing.assert_array_equal(output, self.current)

    def test_full_blend_without_motion_copies_previous(self):
        output = temporal.blend_frames(self.current, self.previous, field(), 1.0)
        np.testing.assert_array_equal(output, self.previous)

    def test_blend_rounds_to_nearest(self):
        current = np.full((2, 2), 10, dtype=np.uint8)
        previous = np.full((2, 2), 11, dtype=np.uint8)
        output = temporal.blend_frames(current, previous, field(width=2, height=2), 0.5)
        np.testing.assert_array_equal(output, np.full((2, 2), 11, dtype=np.uint8))

    def test_weight_is_scaled_by_confidence(self):
        current = np.zeros((2, 2), dtype=np.uint8)
        previous = np.full((2, 2), 100, dtype=np.uint8)
        output = temporal.blend_frames(current, previous, field(confidence=0.5, width=2, height=2), 0.5)
        np.testing.assert_array_equal(output, np.full((2, 2), 25, dtype=np.uint8))

    def test_motion_compensated_sampling_keeps_edges(self):
        current = np.zeros((1, 4), dtype=np.uint8)
        previous = np.array([[10, 20, 30, 40]], dtype=np.uint8)

        output = temporal.blend_frames(current, previous, field(dx=1.0, width=4, height=1), 1.0)

        # Each pixel samples previous[x + 1]; the last column has no sample.
        np.testing.assert_array_equal(output, np.array([[20, 30, 40, 0]], dtype=np.uint8))

    def test_motion_larger_than_frame_changes_nothing(self):
        output = temporal.blend_frames(self.current, self.previous, field(dx=6.0), 1.0)
        np.testing.assert_array_equal(output, self.current)

    def test_shape_mismatch_is_rejected(self):
        with self.assertRaises(ValueError):
            temporal.blend_frames(self.current, self.previous[:2], field(), 0.5)

    def test_input_is_not_mutated(self):
        original = self.current.copy()
        temporal.blend_frames(self.current, self.previous, field(), 0.5)
        np.testing.assert_array_equal(self.current, original)


class TestSmoothFrame(unittest.TestCase):
    def test_overwrites_current_in_place(self):
        rng = np.random.default_rng(3)
        texture = rng.integers(0, 240, size=(32, 32), dtype=np.uint8)
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            current_path = root / "frame_00000001.png"
            previous_path = root / "frame_00000000.png"
            Image.fromarray(np.stack([texture + 10] * 3, axis=-1)).save(current_path)
            Image.fromarray(np.stack([texture] * 3, axis=-1)).save(previous_path)

            result = temporal.smooth_frame(current_path, previous_path, 0.5)

            self.assertEqual(result, current_path)
            with Image.open(current_path) as image:
                self.assertEqual(image.size, (32, 32))
                pixels = np.asarray(image.convert("RGB"))
            np.testing.assert_array_equal(pixels[..., 0], texture + 5)
            self.assertEqual(sorted(path.name for path in root.iterdir()), [previous_path.name, current_path.name])

    def test_previous_of_different_size_is_resized(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            current_path = root / "frame_00000001.png"
            previous_path = root / "frame_00000000.png"
            Image.new("RGB", (32, 32), (40, 40, 40)).save(current_path)
            Image.new("RGB", (64, 64), (40, 40, 40)).save(previous_path)

            temporal.smooth_frame(current_path, previous_path, 0.3)

            with Image.open(current_path) as image:
                self.assertEqual(image.size, (32, 32))
                self.assertEqual(image.getpixel((0, 0)), (40, 40, 40))


if __name__ == "__main__":
    unittest.main()
