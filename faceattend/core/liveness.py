import cv2
import numpy as np
from collections import deque

from faceattend.config.settings import (
    LIVENESS_CROP_SIZE,
    LIVENESS_HISTORY,
    LIVENESS_THRESHOLD,
    TEXTURE_SPOOF_THRESHOLD,
)
from faceattend.core.types import LivenessVerdict, TextureAnalysis
from faceattend.utils.logging import setup_logger


def to_gray(image):
    image = np.asarray(image)
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_BGR2GRAY)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_BGRA2GRAY)
    return image.astype(np.uint8)


def crop_face(frame, bounding_box, size=LIVENESS_CROP_SIZE):
    """
    Cut the face region out of a frame and resize it to size x size so that
    successive crops of a moving face can be compared pixel by pixel.
    Returns None when the box lies outside the frame.
    """
    frame = np.asarray(frame)
    h, w = frame.shape[:2]
    x0 = max(int(round(bounding_box.x)), 0)
    y0 = max(int(round(bounding_box.y)), 0)
    x1 = min(int(round(bounding_box.x + bounding_box.width)), w)
    y1 = min(int(round(bounding_box.y + bounding_box.height)), h)
    if x1 - x0 < 2 or y1 - y0 < 2:
        return None
    crop = frame[y0:y1, x0:x1]
    if size is None:
        return crop
    return cv2.resize(crop, (size, size), interpolation=cv2.INTER_AREA)


class PassiveLivenessAnalyzer:
    """
    Lightweight passive liveness from frame-to-frame pixel differences:
    - head movement, eye movement and blink bands of the mean difference
    - natural movement (the difference itself changes between frames,
      unlike the uniform delta of a replayed video)
    A completed explicit challenge adds a fixed 0.5 to the composite.
    """

    def __init__(self, history=LIVENESS_HISTORY, threshold=LIVENESS_THRESHOLD):
        self.logger = setup_logger()
        self.frames = deque(maxlen=history)
        self.threshold = threshold

    def reset(self):
        self.frames.clear()

    def observe(self, frame):
        gray = to_gray(frame)
        if self.frames and self.frames[-1].shape != gray.shape:
            # Different geometry cannot be diffed; start over
            self.frames.clear()
        self.frames.append(gray)

    def motion_checks(self):
        checks = {
            "blink_detected": False,
            "eye_movement": False,
            "head_movement": False,
            "natural_movement": False,
        }
        if len(self.frames) < 3:
            return checks

        current, previous, previous2 = self.frames[-1], self.frames[-2], self.frames[-3]
        diff = cv2.absdiff(current, previous).astype(np.float32)
        diff2 = cv2.absdiff(previous, previous2).astype(np.float32)

        avg_diff = float(diff.mean())
        movement_pattern = int(np.count_nonzero(np.abs(diff - diff2) > 3))

        checks["natural_movement"] = movement_pattern > diff.size / 2
        checks["head_movement"] = avg_diff > 5
        checks["eye_movement"] = 2 < avg_diff < 15
        checks["blink_detected"] = 3 < avg_diff < 10
        return checks

    def evaluate(self, challenge_completed=False, texture=None, challenge_type=None, quality=None):
        """
        Composite verdict: 0.5 * share of positive checks, plus 0.5 when an
        explicit challenge was completed. Live only above the threshold.
        """
        checks = self.motion_checks()
        checks["challenge_completed"] = bool(challenge_completed)

        movement_score = sum(checks.values()) / len(checks)
        confidence = movement_score * 0.5 + (0.5 if challenge_completed else 0.0)
        is_live = confidence > self.threshold

        self.logger.info(f"Liveness: confidence={confidence:.2f} live={is_live} checks={checks}")
        return LivenessVerdict(
            is_live=is_live,
            confidence=confidence,
            checks=checks,
            texture=texture,
            challenge_type=challenge_type,
            quality=quality,
        )


def analyze_texture(face_crop, threshold=TEXTURE_SPOOF_THRESHOLD):
    """
    Texture heuristic to tell real skin from a screen or print:
    - local variance (real skin has micro-variations)
    - palette size (screens reproduce too few distinct colours)
    - micro-pattern density between neighbouring pixels
    """
    face_crop = np.asarray(face_crop)
    gray = to_gray(face_crop).astype(np.float32)
    h, w = gray.shape
    pixels = float(h * w)

    texture_variance = 0.0
    if h >= 3 and w >= 3:
        up, down = gray[:-2, 1:-1], gray[2:, 1:-1]
        left, right = gray[1:-1, :-2], gray[1:-1, 2:]
        avg = (up + down + left + right) / 4.0
        texture_variance = float(
            (np.abs(up - avg) + np.abs(down - avg) + np.abs(left - avg) + np.abs(right - avg)).sum()
        ) / pixels

    quantized = (face_crop // 10).astype(np.int32)
    if quantized.ndim == 3:
        palette = len(np.unique(quantized.reshape(-1, quantized.shape[2]), axis=0))
    else:
        palette = len(np.unique(quantized))
    color_consistency = palette / pixels

    flat = gray.ravel()
    pairs = flat.size // 2
    micro_patterns = 0.0
    if pairs:
        step = np.abs(flat[0:pairs * 2:2] - flat[1:pairs * 2:2])
        micro_patterns = float(np.count_nonzero((step > 2) & (step < 20))) / pairs

    texture_score = (texture_variance / 50.0) * 0.4 + color_consistency * 0.3 + micro_patterns * 0.3
    return TextureAnalysis(
        texture_score=texture_score,
        is_real_skin=texture_score > threshold,
        texture_variance=texture_variance,
        color_consistency=color_consistency,
        micro_patterns=micro_patterns,
    )


def assess_face_quality(face_crop):
    """
    Brightness, blur and resolution of a face crop, combined into a 0..1 score.
    """
    face_crop = np.asarray(face_crop)
    gray = to_gray(face_crop).astype(np.float32)
    h, w = gray.shape

    brightness = float(face_crop.mean()) / 255.0

    blur = 1.0
    if w >= 3:
        edges = np.abs(gray[:, 1:-1] - gray[:, :-2]) + np.abs(gray[:, 1:-1] - gray[:, 2:])
        blur = 1.0 - min(float(edges.mean()) / 255.0, 1.0)

    resolution = min(w * h / (160.0 * 160.0), 1.0)
    score = brightness * 0.3 + (1.0 - blur) * 0.4 + resolution * 0.3
    return {"score": score, "blur": blur, "brightness": brightness, "resolution": resolution}
