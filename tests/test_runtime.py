import tempfile
import unittest
from pathlib import Path
from unittest import mock

import cv2
import numpy as np

from darknet_kit.config import ModelConfig
from darknet_kit.errors import ClassNamesError, ImageProcessingError, ModelLoadError
from darknet_kit.runtime import DetectionPipeline, load_pipeline, resolve_path


def _tensor(*rows):
    return np.array(rows, dtype=np.float32).reshape(-1, 7)


# Same box in two heads, different classes; cross-class NMS keeps the 0.9 one.
HEAD_A = _tensor([0.5, 0.5, 0.2, 0.1, 1.0, 0.875, 0.0])
HEAD_B = _tensor([0.5, 0.5, 0.2, 0.1, 1.0, 0.0, 0.75], [0.1, 0.1, 0.1, 0.1, 1.0, 0.125, 0.0])


class FakeNet:
    def __init__(self, outputs):
        self.outputs = outputs
        self.blobs = []

    def __call__(self, blob):
        self.blobs.append(blob)
        if isinstance(self.outputs, Exception):
            raise self.outputs
        return self.outputs


class TestDetectionPipeline(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)
        self.image_path = self.tmp / "frame.png"
        cv2.imwrite(str(self.image_path), np.zeros((416, 416, 3), dtype=np.uint8))

    def _pipeline(self, outputs, names=("person", "dog"), **kwargs) -> DetectionPipeline:
        return DetectionPipeline(FakeNet(outputs), ModelConfig(), list(names), **kwargs)

    def test_preprocess_builds_nchw_blob(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        blob = pipe.preprocess(np.full((200, 300, 3), 255, dtype=np.uint8))
        self.assertEqual(blob.shape, (1, 3, 416, 416))
        self.assertAlmostEqual(float(blob.max()), 1.0, places=5)

    def test_detect_pools_heads_then_suppresses(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        candidates, keep = pipe.detect(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual(len(candidates), 2)
        self.assertEqual(keep, [0])
        self.assertEqual(candidates[0].as_xywh(), (166, 187, 83, 41))
        (blob,) = pipe._infer_fn.blobs
        self.assertEqual(blob.shape, (1, 3, 416, 416))

    def test_call_returns_surviving_candidates(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        dets = pipe(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual([d.class_id for d in dets], [0])

    def test_too_few_outputs_is_fatal_for_the_image(self) -> None:
        pipe = self._pipeline([HEAD_A])
        with self.assertRaises(ImageProcessingError) as ctx:
            pipe.detect(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual(ctx.exception.stage, "inference")

    def test_single_output_allowed_when_configured(self) -> None:
        pipe = DetectionPipeline(FakeNet(HEAD_A), ModelConfig(min_output_tensors=1), ["person"])
        _, keep = pipe.detect(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual(keep, [0])

    def test_inference_failure_is_wrapped(self) -> None:
        pipe = self._pipeline(RuntimeError("boom"))
        with self.assertRaises(ImageProcessingError) as ctx:
            pipe.detect(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual(ctx.exception.stage, "inference")

    def test_undecodable_head_does_not_drop_others(self) -> None:
        pipe = self._pipeline([None, HEAD_B])
        with self.assertLogs("darknet_kit.decode", level="ERROR"):
            candidates, keep = pipe.detect(np.zeros((416, 416, 3), dtype=np.uint8))
        self.assertEqual(len(candidates), 1)
        self.assertEqual(keep, [0])

    def test_detect_rejects_non_bgr(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        with self.assertRaises(ImageProcessingError) as ctx:
            pipe.detect(np.zeros((10, 10), dtype=np.uint8))
        self.assertEqual(ctx.exception.stage, "read")

    def test_process_image_annotates(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        result = pipe.process_image(self.image_path)
        self.assertTrue(result.ok)
        self.assertEqual(result.keep, [0])
        self.assertEqual(result.image[187, 166].tolist(), [255, 255, 255])
        self.assertEqual([d.class_id for d in result.detections], [0])

    def test_unreadable_image_fails_only_that_image(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B])
        missing = self.tmp / "missing.jpg"
        with self.assertLogs("darknet_kit.runtime", level="ERROR") as logs:
            results = pipe.run([missing, self.image_path])
        self.assertEqual(len(results), 2)
        self.assertFalse(results[0].ok)
        self.assertIn("read", results[0].error)
        self.assertIsNone(results[0].image)
        self.assertTrue(results[1].ok)
        self.assertTrue(any("missing.jpg" in line for line in logs.output))
        self.assertIn(str(missing), results[0].error)

    def test_inference_failure_names_the_image(self) -> None:
        pipe = self._pipeline(RuntimeError("boom"))
        with self.assertLogs("darknet_kit.runtime", level="ERROR"):
            result = pipe.process_image(self.image_path)
        self.assertFalse(result.ok)
        self.assertIn("inference", result.error)
        self.assertIn(str(self.image_path), result.error)

    def test_nan_head_does_not_stop_run(self) -> None:
        nan_head = _tensor([np.nan, 0.5, 0.2, 0.1, 1.0, 0.875, 0.0])
        pipe = self._pipeline([nan_head, HEAD_B])
        with self.assertLogs("darknet_kit.decode", level="ERROR"):
            results = pipe.run([self.image_path, self.image_path])
        self.assertEqual([r.ok for r in results], [True, True])
        self.assertEqual([d.class_id for d in results[0].detections], [1])

    def test_class_colors_use_the_palette(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B], class_colors=True)
        result = pipe.process_image(self.image_path)
        self.assertTrue(result.ok)
        self.assertEqual(result.image[187, 166].tolist(), [255, 56, 56])

    def test_strict_labels_fail_the_image(self) -> None:
        pipe = self._pipeline([HEAD_A, HEAD_B], names=["only"], strict_labels=False)
        self.assertTrue(pipe.process_image(self.image_path).ok)

        head = _tensor([0.5, 0.5, 0.2, 0.1, 1.0, 0.0, 0.875])
        strict = self._pipeline([head, head], names=["only"], strict_labels=True)
        with self.assertLogs("darknet_kit.runtime", level="ERROR"):
            result = strict.process_image(self.image_path)
        self.assertFalse(result.ok)
        self.assertIn("annotate", result.error)

    def test_unknown_nms_method(self) -> None:
        with self.assertRaises(ValueError):
            self._pipeline([HEAD_A, HEAD_B], nms_method="soft")


class TestLoadPipeline(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        (self.root / "coco.names").write_text("person\ndog\n", encoding="utf-8")

    def test_missing_names_is_fatal(self) -> None:
        cfg = ModelConfig(model_path="yolov3.weights", names_path="nope.names")
        with self.assertRaises(ClassNamesError):
            load_pipeline(cfg, root=self.root)

    def test_missing_weights_is_fatal(self) -> None:
        cfg = ModelConfig(model_path="yolov3.weights", config_path="yolov3.cfg", names_path="coco.names")
        with self.assertRaises(ModelLoadError):
            load_pipeline(cfg, root=self.root)

    def test_onnx_extension_selects_onnxruntime(self) -> None:
        cfg = ModelConfig(model_path="yolov3.onnx", config_path="", names_path="coco.names")
        with mock.patch("darknet_kit.backends.onnxruntime_backend.OnnxRuntimeBackend") as backend_cls:
            pipe = load_pipeline(cfg, root=self.root, onnx_providers=["CPUExecutionProvider"])
        self.assertEqual(pipe.backend_name, "onnxruntime")
        self.assertEqual(pipe.class_names, ["person", "dog"])
        args, _ = backend_cls.call_args
        self.assertEqual(args[0], self.root.resolve() / "yolov3.onnx")
        self.assertEqual(list(args[1].providers), ["CPUExecutionProvider"])

    def test_unknown_backend(self) -> None:
        cfg = ModelConfig(model_path="yolov3.weights", names_path="coco.names")
        with self.assertRaises(ValueError):
            load_pipeline(cfg, backend="tflite", root=self.root)


class TestResolvePath(unittest.TestCase):
    def test_absolute_passthrough(self) -> None:
        p = Path("/tmp/model.weights")
        self.assertEqual(resolve_path(p), p)

    def test_relative_to_root(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            self.assertEqual(resolve_path("net/a.cfg", root=d), (Path(d).resolve() / "net/a.cfg"))


if __name__ == "__main__":
    unittest.main()
