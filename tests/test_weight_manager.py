import io
import os
import tempfile
import unittest

import numpy as np
import torch

from deoldify_engine.models.architecture import build_weight_schedule, parameter_count
from deoldify_engine.models.weight_manager import (
    WeightStore,
    expected_file_size,
    export_state_dict,
    validate_model_file,
)
from deoldify_engine.utils.exceptions import ModelLoadError, WeightFormatError

from tests.helpers import TINY_ARTISTIC, TINY_STABLE, random_weights


class TestWeightStoreLoading(unittest.TestCase):
    """Tests for reading and writing flat model files."""

    def setUp(self):
        self.weights = random_weights(TINY_ARTISTIC, seed=1)
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, "Artistic.model")

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_save_then_load_from_path(self):
        written = WeightStore.save(self.path, self.weights, TINY_ARTISTIC)
        self.assertEqual(written, expected_file_size(TINY_ARTISTIC))
        self.assertEqual(os.path.getsize(self.path), 4 * parameter_count(TINY_ARTISTIC))

        store = WeightStore.load(self.path, TINY_ARTISTIC)
        self.assertEqual(len(store), len(build_weight_schedule(TINY_ARTISTIC)))
        for name, value in self.weights.items():
            np.testing.assert_array_equal(store[name].data, value)

    def test_file_is_plain_little_endian_float32(self):
        WeightStore.save(self.path, self.weights, TINY_ARTISTIC)
        raw = np.fromfile(self.path, dtype="<f4")
        first_name, first_shape = build_weight_schedule(TINY_ARTISTIC)[0]
        count = int(np.prod(first_shape))
        np.testing.assert_array_equal(raw[:count], self.weights[first_name].reshape(-1))

    def test_half_precision_widens_to_float32(self):
        buffer = io.BytesIO()
        WeightStore.save(buffer, self.weights, TINY_ARTISTIC, half=True)
        self.assertEqual(len(buffer.getvalue()), expected_file_size(TINY_ARTISTIC, half=True))

        buffer.seek(0)
        store = WeightStore.load(buffer, TINY_ARTISTIC, half=True)
        name = "layers.0.0.weight"
        self.assertEqual(store[name].data.dtype, np.float32)
        np.testing.assert_allclose(store[name].data, self.weights[name], rtol=1e-3, atol=1e-4)

    def test_truncated_stream_names_parameter(self):
        payload = io.BytesIO()
        WeightStore.save(payload, self.weights, TINY_ARTISTIC)
        truncated = io.BytesIO(payload.getvalue()[:-2])

        with self.assertRaises(WeightFormatError) as ctx:
            WeightStore.load(truncated, TINY_ARTISTIC)
        self.assertEqual(ctx.exception.parameter, "layers.11.0.weight")
        self.assertEqual(ctx.exception.expected_bytes, 4 * 3 * 11)
        self.assertEqual(ctx.exception.available_bytes, 4 * 3 * 11 - 2)

    def test_trailing_bytes_are_rejected(self):
        payload = io.BytesIO()
        WeightStore.save(payload, self.weights, TINY_ARTISTIC)
        with self.assertRaises(WeightFormatError):
            WeightStore.load(io.BytesIO(payload.getvalue() + b"\x00\x00\x00\x00"), TINY_ARTISTIC)

    def test_full_precision_file_read_as_half_is_rejected(self):
        WeightStore.save(self.path, self.weights, TINY_ARTISTIC)
        with self.assertRaises(WeightFormatError):
            WeightStore.load(self.path, TINY_ARTISTIC, half=True)

    def test_missing_file(self):
        with self.assertRaises(ModelLoadError):
            WeightStore.load(os.path.join(self.temp_dir.name, "missing.model"), TINY_ARTISTIC)

    def test_save_requires_every_entry(self):
        incomplete = dict(self.weights)
        del incomplete["layers.3.0.0.weight"]
        with self.assertRaises(WeightFormatError):
            WeightStore.save(io.BytesIO(), incomplete, TINY_ARTISTIC)


class TestWeightStoreMapping(unittest.TestCase):
    """Tests for the read-only mapping interface."""

    def setUp(self):
        self.store = WeightStore(random_weights(TINY_STABLE), spec=TINY_STABLE)

    def test_is_read_only(self):
        with self.assertRaises(TypeError):
            self.store["layers.0.0.weight"] = None

    def test_tensor_checks_shape(self):
        self.assertEqual(self.store.tensor("layers.0.0.weight", (4, 3, 7, 7)).shape, (4, 3, 7, 7))
        with self.assertRaises(WeightFormatError):
            self.store.tensor("layers.0.0.weight", (4, 3, 3, 3))
        with self.assertRaises(WeightFormatError):
            self.store.tensor("layers.99.weight")

    def test_num_values(self):
        self.assertEqual(self.store.num_values, parameter_count(TINY_STABLE))


class TestValidateModelFile(unittest.TestCase):
    """Tests for size-based model file validation."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, "Stable.model")

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_reports_missing_file(self):
        result = validate_model_file(self.path, TINY_STABLE)
        self.assertFalse(result['valid'])
        self.assertFalse(result['file_exists'])

    def test_exact_size_is_valid(self):
        WeightStore.save(self.path, random_weights(TINY_STABLE), TINY_STABLE)
        self.assertTrue(validate_model_file(self.path, TINY_STABLE)['valid'])
        half = validate_model_file(self.path, TINY_STABLE, half=True)
        self.assertFalse(half['valid'])
        self.assertEqual(half['actual_size'], 2 * half['expected_size'])


class TestExportStateDict(unittest.TestCase):
    """Tests for converting PyTorch checkpoints."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.output = os.path.join(self.temp_dir.name, "Stable.model")
        self.weights = random_weights(TINY_STABLE, seed=5)
        state = {name: torch.from_numpy(value.copy()) for name, value in self.weights.items()}
        state["layers.0.1.num_batches_tracked"] = torch.tensor(10)
        self.state = state

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_exports_wrapped_checkpoint_file(self):
        checkpoint_path = os.path.join(self.temp_dir.name, "gen.pth")
        torch.save({"model": self.state, "opt": None}, checkpoint_path)

        written = export_state_dict(checkpoint_path, TINY_STABLE, self.output)
        self.assertEqual(written, expected_file_size(TINY_STABLE))
        store = WeightStore.load(self.output, TINY_STABLE)
        np.testing.assert_array_equal(store["layers.11.0.bias"].data, self.weights["layers.11.0.bias"])

    def test_accepts_conv1d_attention_projections(self):
        name = "layers.5.conv.3.query.weight"
        self.state[name] = self.state[name].reshape(1, 8, 1)
        export_state_dict(self.state, TINY_STABLE, self.output)
        store = WeightStore.load(self.output, TINY_STABLE)
        self.assertEqual(store[name].shape, (1, 8, 1, 1))

    def test_resolves_spectral_norm_weights(self):
        name = "layers.5.conv.3.value.weight"
        del self.state[name]
        weight = (2.0 * torch.eye(8) + 0.25).reshape(8, 8, 1)
        u = torch.ones(8) / np.sqrt(8)
        v = torch.ones(8) / np.sqrt(8)
        prefix = name[:-len("weight")]
        self.state[prefix + "weight_orig"] = weight
        self.state[prefix + "weight_u"] = u
        self.state[prefix + "weight_v"] = v

        export_state_dict(self.state, TINY_STABLE, self.output)
        sigma = float(u @ (weight.reshape(8, -1) @ v))
        store = WeightStore.load(self.output, TINY_STABLE)
        np.testing.assert_allclose(store[name].data.reshape(8, 8),
                                   (weight.reshape(8, 8) / sigma).numpy(), rtol=1e-5)

    def test_missing_entry_raises(self):
        del self.state["layers.3.1.2.running_var"]
        with self.assertRaises(WeightFormatError):
            export_state_dict(self.state, TINY_STABLE, self.output)

    def test_shape_disagreement_raises(self):
        self.state["layers.0.0.weight"] = torch.zeros(4, 3, 3, 3)
        with self.assertRaises(WeightFormatError):
            export_state_dict(self.state, TINY_STABLE, self.output)

    def test_missing_checkpoint(self):
        with self.assertRaises(ModelLoadError):
            export_state_dict(os.path.join(self.temp_dir.name, "none.pth"), TINY_STABLE, self.output)


if __name__ == "__main__":
    unittest.main()
