import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

from droneaid_kit.errors import DecodeError
from droneaid_kit.preprocess import MAX_SIZE, compute_target_size, decode_image, image_to_tensor, preprocess


def _encode_png(rgb: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return buf.tobytes()


class TestComputeTargetSize(unittest.TestCase):
    def test_square_images_map_to_max_size(self) -> None:
        for side in (1, 57, 399, 400, 401, 1024, 4000):
            self.assertEqual(compute_target_size(side, side), (MAX_SIZE, MAX_SIZE))

    def test_landscape_keeps_aspect_ratio(self) -> None:
        for w, h in [(1000, 500), (1000, 333), (640, 480), (1920, 1080), (401, 7)]:
            tw, th = compute_target_size(w, h)
            self.assertEqual(tw, 400)
            self.assertEqual(th, round(400 * h / w))
            self.assertLessEqual(abs(th - 400 * h / w), 1.0)

    def test_portrait_keeps_aspect_ratio(self) -> None:
        tw, th = compute_target_size(480, 640)
        self.assertEqual((tw, th), (300, 400))

    def test_thin_image_keeps_one_pixel(self) -> None:
        self.assertEqual(compute_target_size(1000, 1), (400, 1))

    def test_custom_max_size(self) -> None:
        self.assertEqual(compute_target_size(200, 100, max_size=50), (50, 25))

    def test_rejects_empty_dimensions(self) -> None:
        with self.assertRaises(ValueError):
            compute_target_size(0, 10)


class TestDecodeImage(unittest.TestCase):
    def setUp(self) -> None:
        self.rgb = np.zeros((6, 8, 3), dtype=np.uint8)
        self.rgb[:, :4] = (255, 0, 0)
        self.rgb[:, 4:] = (0, 0, 255)

    def test_decodes_png_bytes_as_rgb(self) -> None:
        out = decode_image(_encode_png(self.rgb))
        self.assertEqual(out.dtype, np.uint8)
        self.assertTrue(np.array_equal(out, self.rgb))

    def test_decodes_file_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "img.png"
            path.write_bytes(_encode_png(self.rgb))
            self.assertTrue(np.array_equal(decode_image(path), self.rgb))
            self.assertTrue(np.array_equal(decode_image(str(path)), self.rgb))

    def test_rgba_drops_alpha(self) -> None:
        rgba = np.dstack([self.rgb, np.full((6, 8), 128, dtype=np.uint8)])
        self.assertTrue(np.array_equal(decode_image(rgba), self.rgb))

    def test_grayscale_is_replicated(self) -> None:
        gray = np.arange(12, dtype=np.uint8).reshape(3, 4)
        out = decode_image(gray)
        self.assertEqual(out.shape, (3, 4, 3))
        self.assertTrue(np.array_equal(out[:, :, 2], gray))

    def test_corrupt_bytes_raise_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_image(b"definitely not an image")

    def test_empty_bytes_raise_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_image(b"")

    def test_missing_file_raises_decode_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(DecodeError):
                decode_image(Path(tmp) / "missing.jpg")

    def test_bad_shapes_raise_decode_error(self) -> None:
        for bad in (np.zeros((4, 4, 2), dtype=np.uint8), np.zeros((0, 4, 3), dtype=np.uint8)):
            with self.assertRaises(DecodeError):
                decode_image(bad)

    def test_unsupported_type_raises_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_image(42)  # type: ignore[arg-type]

    def test_decode_error_is_value_error(self) -> None:
        self.assertTrue(issubclass(DecodeError, ValueError))


class TestImageToTensor(unittest.TestCase):
    def test_landscape_tensor_shape(self) -> None:
        pixels = np.full((300, 600, 3), 7, dtype=np.uint8)
        tensor = image_to_tensor(pixels)
        self.assertEqual(tensor.shape, (1, 200, 400, 3))
        self.assertEqual(tensor.dtype, np.float32)
        self.assertTrue(np.allclose(tensor, 7.0))

    def test_square_tensor_shape(self) -> None:
        tensor = image_to_tensor(np.zeros((123, 123, 3), dtype=np.uint8))
        self.assertEqual(tensor.shape, (1, 400, 400, 3))

    def test_input_is_not_modified(self) -> None:
        pixels = np.random.default_rng(0).integers(0, 256, size=(50, 80, 3), dtype=np.uint8)
        before = pixels.copy()
        image_to_tensor(pixels)
        self.assertTrue(np.array_equal(pixels, before))


class TestPreprocessAsync(unittest.IsolatedAsyncioTestCase):
    async def test_preprocess_array(self) -> None:
        tensor = await preprocess(np.zeros((480, 640, 3), dtype=np.uint8))
        self.assertEqual(tensor.shape, (1, 300, 400, 3))

    async def test_preprocess_encoded_bytes(self) -> None:
        rgb = np.zeros((100, 50, 3), dtype=np.uint8)
        tensor = await preprocess(_encode_png(rgb))
        self.assertEqual(tensor.shape, (1, 400, 200, 3))

    async def test_preprocess_propagates_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            await preprocess(b"\x00\x01\x02")


if __name__ == "__main__":
    unittest.main()
