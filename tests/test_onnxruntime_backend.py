import sys
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import numpy as np

from darknet_kit.backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig
from darknet_kit.errors import ModelLoadError


def _fake_ort(session=None, error=None):
    ort = mock.MagicMock()
    if error is not None:
        ort.InferenceSession.side_effect = error
    else:
        ort.InferenceSession.return_value = session
    return ort


def _session(output_names=("out0", "out1", "out2")):
    session = mock.MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="images")]
    session.get_outputs.return_value = [SimpleNamespace(name=n) for n in output_names]
    session.run.side_effect = lambda names, inputs: [np.full((1, 7), i, dtype=np.float32) for i in range(len(names))]
    return session


class TestOnnxRuntimeBackend(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.model_path = Path(tmpdir.name) / "yolov3.onnx"
        self.model_path.write_bytes(b"not really onnx")
        self.blob = np.zeros((1, 3, 416, 416), dtype=np.float32)

    def _backend(self, ort, cfg=OnnxRuntimeBackendConfig()) -> OnnxRuntimeBackend:
        with mock.patch.dict(sys.modules, {"onnxruntime": ort}):
            return OnnxRuntimeBackend(self.model_path, cfg)

    def test_missing_model_is_fatal(self) -> None:
        ort = _fake_ort(_session())
        with mock.patch.dict(sys.modules, {"onnxruntime": ort}):
            with self.assertRaises(ModelLoadError):
                OnnxRuntimeBackend(self.model_path.with_name("nope.onnx"))
        ort.InferenceSession.assert_not_called()

    def test_session_failure_is_a_load_error(self) -> None:
        ort = _fake_ort(error=RuntimeError("INVALID_PROTOBUF"))
        with self.assertRaises(ModelLoadError) as ctx:
            self._backend(ort)
        self.assertIn("INVALID_PROTOBUF", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_infer_returns_every_output(self) -> None:
        session = _session()
        backend = self._backend(_fake_ort(session))
        outputs = backend.infer(self.blob)
        self.assertIsInstance(outputs, list)
        self.assertEqual(len(outputs), 3)
        self.assertEqual([float(o[0, 0]) for o in outputs], [0.0, 1.0, 2.0])
        names, inputs = session.run.call_args.args
        self.assertEqual(names, ["out0", "out1", "out2"])
        self.assertEqual(list(inputs), ["images"])
        self.assertIs(inputs["images"], self.blob)

    def test_output_names_override(self) -> None:
        session = _session()
        backend = self._backend(_fake_ort(session), OnnxRuntimeBackendConfig(output_names=["out1"]))
        outputs = backend.infer(self.blob)
        self.assertEqual(len(outputs), 1)
        names, _ = session.run.call_args.args
        self.assertEqual(names, ["out1"])

    def test_providers_and_input_name_are_passed_through(self) -> None:
        ort = _fake_ort(_session())
        cfg = OnnxRuntimeBackendConfig(providers=("CPUExecutionProvider",), input_name="data")
        backend = self._backend(ort, cfg)
        self.assertEqual(ort.InferenceSession.call_args.kwargs["providers"], ["CPUExecutionProvider"])
        backend.infer(self.blob, extra_inputs={"scale": 1.0})
        _, inputs = backend.session.run.call_args.args
        self.assertEqual(sorted(inputs), ["data", "scale"])


if __name__ == "__main__":
    unittest.main()
