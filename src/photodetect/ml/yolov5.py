"""YOLOv5 object detector on ONNX Runtime.

Pipeline:
    NormalizedImage -> letterbox (longer side to input size, pad with 114)
    -> ONNX inference -> confidence filter -> NMS -> undo letterbox -> clip

Expects the standard YOLOv5 export with a single ``(1, N, 5 + classes)``
output holding ``cx, cy, w, h, objectness, class scores...`` in input pixels.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from photodetect.ml.detector import Detection

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from photodetect.config import Settings
    from photodetect.imaging.normalizer import NormalizedImage
    from photodetect.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

PAD_VALUE: int = 114
STRIDE: int = 32

COCO_CLASSES: tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat", "traffic light",
    "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep", "cow",
    "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove", "skateboard", "surfboard",
    "tennis racket", "bottle", "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple",
    "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote", "keyboard", "cell phone",
    "microwave", "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush",
)  # fmt: skip


@dataclass(frozen=True)
class Letterbox:
    """Geometry needed to map model-space boxes back to the source image."""

    scale: float
    pad_x: int
    pad_y: int
    width: int
    height: int


def letterbox(
    pixels: NDArray[np.uint8],
    target_size: int = 640,
    padded_shape: tuple[int, int] | None = None,
) -> tuple[NDArray[np.float32], Letterbox]:
    """Resize and pad an HxWx3 RGB image into a normalized NCHW tensor.

    Args:
        pixels: HxWx3 RGB uint8 array.
        target_size: Length of the longer side after resizing.
        padded_shape: Fixed ``(height, width)`` model input; when None each
            side is padded up to the next multiple of 32.

    Returns:
        The float32 ``(1, 3, H, W)`` tensor scaled to [0, 1], and the
        letterbox geometry.
    """
    height, width = pixels.shape[:2]
    if width > height:
        scale = target_size / width
        new_w, new_h = target_size, max(1, int(height * scale))
    else:
        scale = target_size / height
        new_w, new_h = max(1, int(width * scale)), target_size

    if padded_shape is None:
        padded_h = (new_h + STRIDE - 1) // STRIDE * STRIDE
        padded_w = (new_w + STRIDE - 1) // STRIDE * STRIDE
    else:
        padded_h, padded_w = padded_shape

    pad_x = (padded_w - new_w) // 2
    pad_y = (padded_h - new_h) // 2

    resized = Image.fromarray(pixels).resize((new_w, new_h), Image.Resampling.BILINEAR)
    canvas = np.full((padded_h, padded_w, 3), PAD_VALUE, dtype=np.uint8)
    canvas[pad_y : pad_y + new_h, pad_x : pad_x + new_w] = np.asarray(resized)

    tensor = (canvas.astype(np.float32) / 255.0).transpose(2, 0, 1)[np.newaxis]
    return np.ascontiguousarray(tensor), Letterbox(scale=scale, pad_x=pad_x, pad_y=pad_y, width=width, height=height)


def non_max_suppression(boxes: NDArray[np.float32], iou_threshold: float) -> list[int]:
    """Greedy class-agnostic NMS over ``x0, y0, x1, y1`` rows sorted by score."""
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    picked: list[int] = []
    for i in range(len(boxes)):
        if picked:
            kept = np.asarray(picked)
            inter_w = np.minimum(boxes[i, 2], boxes[kept, 2]) - np.maximum(boxes[i, 0], boxes[kept, 0])
            inter_h = np.minimum(boxes[i, 3], boxes[kept, 3]) - np.maximum(boxes[i, 1], boxes[kept, 1])
            inter = np.clip(inter_w, 0, None) * np.clip(inter_h, 0, None)
            union = areas[i] + areas[kept] - inter
            iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
            if np.any(iou > iou_threshold):
                continue
        picked.append(i)
    return picked


def postprocess(
    output: NDArray[np.float32],
    geometry: Letterbox,
    prob_threshold: float = 0.25,
    nms_threshold: float = 0.45,
    class_names: Sequence[str] = COCO_CLASSES,
) -> list[Detection]:
    """Turn raw YOLOv5 predictions into detections in source-image pixels.

    Returns:
        Detections sorted by descending confidence.
    """
    preds = output.reshape(-1, output.shape[-1])
    if preds.shape[0] == 0:
        return []

    class_scores = preds[:, 5:]
    class_ids = class_scores.argmax(axis=1)
    confidence = preds[:, 4] * class_scores[np.arange(len(preds)), class_ids]

    mask = confidence >= prob_threshold
    preds, class_ids, confidence = preds[mask], class_ids[mask], confidence[mask]
    if preds.shape[0] == 0:
        return []

    order = np.argsort(-confidence, kind="stable")
    preds, class_ids, confidence = preds[order], class_ids[order], confidence[order]

    cx, cy, w, h = preds[:, 0], preds[:, 1], preds[:, 2], preds[:, 3]
    boxes = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)

    # Suppress in letterbox space, then map the survivors back to source pixels.
    keep = non_max_suppression(boxes, nms_threshold)
    boxes = boxes[keep]
    boxes[:, [0, 2]] = np.clip((boxes[:, [0, 2]] - geometry.pad_x) / geometry.scale, 0, geometry.width - 1)
    boxes[:, [1, 3]] = np.clip((boxes[:, [1, 3]] - geometry.pad_y) / geometry.scale, 0, geometry.height - 1)
    class_ids, confidence = class_ids[keep], confidence[keep]

    detections: list[Detection] = []
    for i in range(len(boxes)):
        x0, y0, x1, y1 = (float(v) for v in boxes[i])
        class_id = int(class_ids[i])
        label = class_names[class_id] if class_id < len(class_names) else str(class_id)
        detections.append(
            Detection(
                x=x0,
                y=y0,
                w=x1 - x0,
                h=y1 - y0,
                label=label,
                confidence=min(float(confidence[i]), 1.0),
            )
        )
    return detections


class YoloV5Detector:
    """Detector backed by a YOLOv5 ONNX model."""

    def __init__(self, settings: Settings, model_manager: ModelManager) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._model_name = settings.detection_model
        self._input_name: str | None = None
        self._padded_shape: tuple[int, int] | None = None

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        return self._model_name

    @property
    def initialized(self) -> bool:
        return self._input_name is not None

    def initialize(self) -> bool:
        """Load the CPU session and read the model's input signature."""
        try:
            session = self._model_manager.get_session(self._model_name, accelerated=False)
            model_input = session.get_inputs()[0]
            height, width = model_input.shape[2:4]
        except Exception:
            logger.exception("Failed to load detection model %s", self._model_name)
            return False

        if isinstance(height, int) and isinstance(width, int):
            self._padded_shape = (height, width)
        self._input_name = model_input.name
        logger.info("Detector %s ready (input=%s %s)", self._model_name, model_input.name, model_input.shape)
        return True

    def detect(self, image: NormalizedImage, use_acceleration: bool) -> list[Detection] | None:
        """Run detection; returns None when it could not run."""
        if self._input_name is None:
            logger.warning("Detect called before the detector was initialized")
            return None
        if use_acceleration and not self._model_manager.acceleration_available():
            logger.warning("Accelerated detection requested but no accelerated provider is available")
            return None

        start = time.perf_counter()
        target_size = min(self._padded_shape) if self._padded_shape else self._settings.input_size
        tensor, geometry = letterbox(image.pixels, target_size, self._padded_shape)
        try:
            session = self._model_manager.get_session(self._model_name, accelerated=use_acceleration)
            outputs = session.run(None, {self._input_name: tensor})
            detections = postprocess(
                outputs[0],
                geometry,
                prob_threshold=self._settings.prob_threshold,
                nms_threshold=self._settings.nms_threshold,
            )
        except Exception:
            logger.exception("Inference failed (accelerated=%s)", use_acceleration)
            return None

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%.2fms detect, %d objects (accelerated=%s)", elapsed_ms, len(detections), use_acceleration)
        return detections
