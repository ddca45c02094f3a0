"""SCRFD keypoint detector using InsightFace.

This module finds the most prominent face in an image with SCRFD (via
InsightFace's FaceAnalysis API) and reduces its 5-point landmarks to the four
roles used for alignment: left eye, right eye, nose, mouth center.
"""

from __future__ import annotations

import numpy as np

from faceid.config import Config
from faceid.errors import ModelLoadError, NoFaceDetectedError
from faceid.interfaces import KeypointSet
from faceid.logging_config import get_logger

logger = get_logger(__name__)


def five_to_four_points(kps_5pt: np.ndarray) -> KeypointSet:
    """Collapse SCRFD's 5 landmarks into the 4-point layout.

    SCRFD order is left_eye, right_eye, nose, left_mouth, right_mouth; the
    mouth center is the midpoint of the two mouth corners.

    Args:
        kps_5pt: Landmarks, shape [5, 2]

    Returns:
        KeypointSet in left_eye, right_eye, nose, mouth_center order.
    """
    kps_5pt = np.asarray(kps_5pt, dtype=np.float64)
    if kps_5pt.shape != (5, 2):
        raise ValueError(f"Expected kps shape (5, 2), got {kps_5pt.shape}")

    mouth_center = kps_5pt[3:5].mean(axis=0)
    return KeypointSet(np.vstack([kps_5pt[:3], mouth_center]))


class SCRFDDetector:
    """Keypoint detector using InsightFace SCRFD model.

    Attributes:
        app: InsightFace FaceAnalysis instance
        ctx_id: Device context (-1=CPU, 0+=GPU)
        det_size: Detection input size (default: (640, 640))
        min_score: Minimum detection confidence accepted as a face

    Example:
        >>> detector = SCRFDDetector(get_config())
        >>> keypoints = detector.detect(frame)
    """

    def __init__(
        self,
        config: Config,
        det_size: tuple[int, int] = (640, 640),
        min_score: float = 0.5,
    ):
        """Initialize SCRFD detector.

        Args:
            config: Configuration object with ctx_id and model_pack
            det_size: Detection input size as (width, height).
                     Larger sizes = better accuracy but slower.
            min_score: Minimum detection confidence (0.0 to 1.0)

        Raises:
            ModelLoadError: If model fails to load.
        """
        self.ctx_id = config.ctx_id
        self.det_size = det_size
        self.min_score = min_score

        logger.info(
            f"Initializing SCRFD detector (model={config.model_pack}, "
            f"device={'GPU:' + str(config.ctx_id) if config.ctx_id >= 0 else 'CPU'}, "
            f"det_size={det_size})"
        )

        try:
            from insightface.app import FaceAnalysis

            # allowed_modules=['detection'] means only load detector, not recognition
            self.app = FaceAnalysis(
                name=config.model_pack,
                allowed_modules=["detection"],
                providers=(
                    ["CUDAExecutionProvider", "CPUExecutionProvider"]
                    if config.ctx_id >= 0
                    else ["CPUExecutionProvider"]
                ),
            )
            self.app.prepare(ctx_id=config.ctx_id, det_size=det_size)

        except Exception as e:
            logger.error(f"Failed to initialize SCRFD detector: {e}", exc_info=True)
            raise ModelLoadError(f"Could not load SCRFD detector: {e}") from e

        logger.info("SCRFD detector initialized successfully")

    def detect(self, frame_bgr: np.ndarray) -> KeypointSet:
        """Detect the landmarks of the highest-scoring face.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            KeypointSet for the most confident face.

        Raises:
            NoFaceDetectedError: If no face with landmarks scores above min_score.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            raise NoFaceDetectedError("Empty frame provided to detector")

        faces = self.app.get(frame_bgr)
        candidates = [
            face
            for face in faces
            if getattr(face, "kps", None) is not None
            and float(face.det_score) >= self.min_score
        ]

        if not candidates:
            logger.debug(f"No face found ({len(faces)} raw detections)")
            raise NoFaceDetectedError("No face detected")

        best = max(candidates, key=lambda face: float(face.det_score))
        logger.debug(
            f"Detected {len(candidates)} face(s), best score={float(best.det_score):.3f}"
        )

        return five_to_four_points(best.kps)

    def __repr__(self) -> str:
        """String representation of detector."""
        return (
            f"SCRFDDetector(ctx_id={self.ctx_id}, "
            f"det_size={self.det_size}, min_score={self.min_score})"
        )
