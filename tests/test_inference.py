import gc
import os
import tempfile
import unittest
import weakref
from pathlib import Path
from unittest.mock import patch

import numpy as np
from PIL import Image

from deoldify_engine.data.models import EngineConfig
from deoldify_engine.inference.inference_wrapper import ColorizationInference
from deoldify_engine.models.weight_manager import WeightStore
from deoldify_engine.utils.color_converter import ColorSpaceConverter
from deoldify_engine.utils.exceptions import (
    EngineNotInitializedError,
    ModelLoadError,
    WeightFormatError,
)

from tests.helpers import TINY_ARTISTIC, TINY_STABLE, gray_gradient, random_weights

ARCHITECTURE_LOOKUP = "deoldify_engine.inference.inference_wrapper.get_architecture"


class TestUninitializedEngine(unittest.TestCase):

    def setUp(self):
        self.engine = ColorizationInference(EngineConfig(render_size=64))

    def test_operations_require_model(self):
        self.assertFalse(self.engine.is_initialized)
        with self.assertRaises(EngineNotInitializedError):
            self.engine.colorize(gray_gradient(32, 32))
        with self.assertRaises(EngineNotInitializedError):
            self.engine.colorize_image("photo.png")
        with self.assertRaises(EngineNotInitializedError):
            self.engine.colorize_batch(["photo.png"])

    def test_state_before_initialize(self):
        self.assertIsNone(self.engine.variant)
        self.assertEqual(self.engine.conv_count, 0)
        self.assertEqual(self.engine.progress_step, 0.0)
        self.assertEqual(self.engine.progress, 0.0)
        self.assertEqual(self.engine.get_model_info(), {'initialized': False})


class TestColorize(unittest.TestCase):
    """Tests for in-memory colorization with both variants."""

    @classmethod
    def setUpClass(cls):
        cls.stable_weights = random_weights(TINY_STABLE, seed=11)
        cls.artistic_weights = random_weights(TINY_ARTISTIC, seed=12)

    def setUp(self):
        self.engine = ColorizationInference(EngineConfig(render_size=64))
        self.engine.initialize_from_store(TINY_STABLE, self.stable_weights)
        self.converter = ColorSpaceConverter()

    def test_output_keeps_size_and_luminance(self):
        image = gray_gradient(120, 160)
        result = self.engine.colorize(image)

        self.assertEqual(result.shape, (120, 160, 3))
        self.assertEqual(result.dtype, np.uint8)

        # pixels with a channel at the range limits may have been clamped
        unclamped = ((result > 0) & (result < 255)).all(axis=2)
        diff = np.abs(self.converter.luma(result) - self.converter.luma(image))
        self.assertTrue((diff[unclamped] < 1.5).all())

    def test_square_512_image(self):
        image = gray_gradient(512, 512)
        result = self.engine.colorize(image)
        self.assertEqual(result.shape, (512, 512, 3))

        unclamped = ((result > 0) & (result < 255)).all(axis=2)
        diff = np.abs(self.converter.luma(result) - self.converter.luma(image))
        self.assertTrue((diff[unclamped] < 1.5).all())

    def test_accepts_grayscale_and_pil_input(self):
        gray = gray_gradient(64, 80)[..., 0]
        from_array = self.engine.colorize(gray)
        from_pil = self.engine.colorize(Image.fromarray(gray))
        self.assertEqual(from_array.shape, (64, 80, 3))
        np.testing.assert_array_equal(from_array, from_pil)

    def test_progress_reports_every_convolution(self):
        for spec, weights, expected in ((TINY_STABLE, self.stable_weights, 121),
                                        (TINY_ARTISTIC, self.artistic_weights, 57)):
            with self.subTest(variant=spec.name):
                self.engine.initialize_from_store(spec, weights)
                values, observed = [], []

                def callback(value):
                    values.append(value)
                    observed.append(self.engine.progress)

                self.engine.colorize(gray_gradient(64, 64), progress_callback=callback)
                self.assertEqual(len(values), expected)
                self.assertEqual(values, sorted(values))
                self.assertAlmostEqual(values[-1], 100.0, places=4)
                self.assertTrue(all(0.0 <= v <= 100.0 for v in values))
                np.testing.assert_allclose(observed, values)
                self.assertEqual(self.engine.progress, 0.0)

    def test_default_callback_from_constructor(self):
        values = []
        engine = ColorizationInference(EngineConfig(render_size=64), progress_callback=values.append)
        engine.initialize_from_store(TINY_ARTISTIC, self.artistic_weights)
        engine.colorize(gray_gradient(64, 64))
        self.assertEqual(len(values), 57)

    def test_callback_exception_aborts_and_resets(self):
        def abort(value):
            if value > 50.0:
                raise RuntimeError("cancelled")

        with self.assertRaises(RuntimeError):
            self.engine.colorize(gray_gradient(64, 64), progress_callback=abort)
        self.assertEqual(self.engine.progress, 0.0)

        # the engine stays usable
        self.assertEqual(self.engine.colorize(gray_gradient(64, 64)).shape, (64, 64, 3))

    def test_switching_variants(self):
        self.assertEqual(self.engine.variant, "stable")
        self.assertEqual(self.engine.conv_count, 121)

        self.engine.initialize_from_store(TINY_ARTISTIC, self.artistic_weights)
        self.assertEqual(self.engine.variant, "artistic")
        self.assertEqual(self.engine.conv_count, 57)
        self.assertAlmostEqual(self.engine.progress_step, 100.0 / 57)

    def test_incomplete_store_leaves_engine_uninitialized(self):
        weights = dict(self.artistic_weights)
        del weights["layers.11.0.bias"]
        with self.assertRaises(WeightFormatError):
            self.engine.initialize_from_store(TINY_ARTISTIC, weights)
        self.assertFalse(self.engine.is_initialized)

    def test_model_info(self):
        info = self.engine.get_model_info()
        self.assertTrue(info['initialized'])
        self.assertEqual(info['variant'], "stable")
        self.assertEqual(info['precision'], "full")
        self.assertEqual(info['convolutions'], 121)
        self.assertEqual(info['model_file'], "Stable.model")


class TestFileOperations(unittest.TestCase):
    """Tests for model files and image files on disk."""

    @classmethod
    def setUpClass(cls):
        cls.stable_weights = random_weights(TINY_STABLE, seed=21)
        cls.artistic_weights = random_weights(TINY_ARTISTIC, seed=22)

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.models_dir = self.root / "models"
        self.models_dir.mkdir()
        self.engine = ColorizationInference(EngineConfig(models_dir=str(self.models_dir), render_size=64))

    def tearDown(self):
        self.temp_dir.cleanup()

    def _write_image(self, name, height=48, width=64):
        path = self.root / name
        Image.fromarray(gray_gradient(height, width)).save(path)
        return path

    def test_initialize_from_models_dir(self):
        WeightStore.save(self.models_dir / "Stable.model", self.stable_weights, TINY_STABLE)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_STABLE):
            self.engine.initialize("stable")
        self.assertTrue(self.engine.is_initialized)
        self.assertEqual(self.engine.variant, "stable")
        self.assertFalse(self.engine.half)

    def test_initialize_half_precision(self):
        WeightStore.save(self.models_dir / "Artistic.model", self.artistic_weights, TINY_ARTISTIC, half=True)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_ARTISTIC):
            self.engine.initialize("artistic", half=True)
        self.assertTrue(self.engine.half)
        self.assertEqual(self.engine.get_model_info()['precision'], "half")

    def test_missing_model_unloads_previous(self):
        self.engine.initialize_from_store(TINY_STABLE, self.stable_weights)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_ARTISTIC):
            with self.assertRaises(ModelLoadError):
                self.engine.initialize("artistic")
        self.assertFalse(self.engine.is_initialized)

    def test_switching_variants_releases_previous_weights(self):
        WeightStore.save(self.models_dir / "Stable.model", self.stable_weights, TINY_STABLE)
        WeightStore.save(self.models_dir / "Artistic.model", self.artistic_weights, TINY_ARTISTIC)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_STABLE):
            self.engine.initialize("stable")
        stable_head = weakref.ref(self.engine._network.params.head.weight.data)

        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_ARTISTIC):
            self.engine.initialize("artistic")
        gc.collect()

        self.assertIsNone(stable_head())
        self.assertEqual(self.engine.variant, "artistic")
        self.assertEqual(self.engine.conv_count, 57)
        self.assertAlmostEqual(self.engine.progress_step, 100.0 / 57)
        output = self.engine.colorize(gray_gradient(32, 48))
        self.assertEqual(output.shape, (32, 48, 3))

    def test_failed_initialize_resets_precision(self):
        WeightStore.save(self.models_dir / "Artistic.model", self.artistic_weights, TINY_ARTISTIC, half=True)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_ARTISTIC):
            self.engine.initialize("artistic", half=True)
        self.assertTrue(self.engine.half)

        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_STABLE):
            with self.assertRaises(ModelLoadError):
                self.engine.initialize("stable")
        self.assertFalse(self.engine.is_initialized)
        self.assertFalse(self.engine.half)
        self.assertEqual(self.engine.conv_count, 0)

    def test_truncated_model_file(self):
        path = self.models_dir / "Stable.model"
        WeightStore.save(path, self.stable_weights, TINY_STABLE)
        with open(path, "r+b") as f:
            f.truncate(os.path.getsize(path) - 10)

        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_STABLE):
            with self.assertRaises(WeightFormatError):
                self.engine.initialize("stable")
        self.assertFalse(self.engine.is_initialized)

    def test_check_model(self):
        WeightStore.save(self.models_dir / "Stable.model", self.stable_weights, TINY_STABLE)
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_STABLE):
            self.assertTrue(self.engine.check_model("stable"))
            self.assertFalse(self.engine.check_model("stable", half=True))
        with patch(ARCHITECTURE_LOOKUP, return_value=TINY_ARTISTIC):
            self.assertFalse(self.engine.check_model("artistic"))

    def test_colorize_image_default_output(self):
        self.engine.initialize_from_store(TINY_STABLE, self.stable_weights)
        source = self._write_image("photo.png")

        output = self.engine.colorize_image(source)
        self.assertEqual(output, self.root / "photo-color.png")
        with Image.open(output) as saved:
            self.assertEqual(saved.size, (64, 48))
            self.assertEqual(saved.mode, "RGB")

    def test_colorize_batch_reports_failures(self):
        self.engine.initialize_from_store(TINY_ARTISTIC, self.artistic_weights)
        good = self._write_image("good.png")
        broken = self.root / "broken.jpg"
        broken.write_bytes(b"\x00" * 32)
        out_dir = self.root / "out"

        results = self.engine.colorize_batch([good, broken], output_dir=out_dir, suffix="_c")
        self.assertEqual(results, [out_dir / "good_c.png", None])
        self.assertTrue(results[0].is_file())

    def test_colorize_batch_empty(self):
        self.engine.initialize_from_store(TINY_ARTISTIC, self.artistic_weights)
        self.assertEqual(self.engine.colorize_batch([]), [])


if __name__ == "__main__":
    unittest.main()
