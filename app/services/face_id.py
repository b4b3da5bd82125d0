"""
Face verification.

Embeddings are produced on the device; the server only validates them and
compares a fresh candidate against the employee's enrolled embedding.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from app.core.config import FACE_EMBEDDING_SIZE, FACE_SIMILARITY_THRESHOLD
from app.models.attendance import VerificationStatusEnum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    similarity: float
    passed: bool


@dataclass
class FaceCheck:
    """How a verification outcome lands on the attendance record"""
    status: VerificationStatusEnum
    similarity: Optional[float] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == VerificationStatusEnum.VERIFIED


def validate_embedding(embedding: Sequence[float], size: int = FACE_EMBEDDING_SIZE) -> Optional[str]:
    """Return an error message, or None when the embedding is usable"""
    if embedding is None:
        return "Embedding is missing"
    try:
        vector = np.asarray(embedding, dtype=np.float64)
    except (TypeError, ValueError):
        return "Embedding must be a list of numbers"
    if vector.ndim != 1 or vector.shape[0] != size:
        return f"Embedding must be {size} dimensions, got {vector.size}"
    if not np.all(np.isfinite(vector)):
        return "Embedding contains non-finite values"
    norm = float(np.linalg.norm(vector))
    if abs(norm - 1.0) > 0.1:
        return f"Embedding not properly normalized. L2 norm: {norm:.4f}"
    if np.allclose(vector, vector[0]):
        return "Embedding values are all identical"
    return None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding shapes differ: {va.shape} vs {vb.shape}")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def verify(candidate: Sequence[float], enrolled: Sequence[float],
           threshold: float = FACE_SIMILARITY_THRESHOLD) -> VerificationResult:
    similarity = cosine_similarity(candidate, enrolled)
    return VerificationResult(similarity=similarity, passed=similarity >= threshold)


def evaluate(candidate: Optional[Sequence[float]], enrolled: Optional[Sequence[float]],
             quality_passed: bool = True, quality_warnings: Optional[List[str]] = None,
             threshold: float = FACE_SIMILARITY_THRESHOLD) -> FaceCheck:
    """
    Map a candidate/enrolled pair to a verification status.

    Never raises: anything that prevents a biometric match degrades the record
    to FLAGGED with a warning so a reviewer can look at it.
    """
    warnings = list(quality_warnings or [])

    if enrolled is None:
        warnings.append("No enrolled face on file; attendance flagged for review")
        return FaceCheck(VerificationStatusEnum.FLAGGED, None, warnings)
    if candidate is None:
        warnings.append("No face embedding supplied; attendance flagged for review")
        return FaceCheck(VerificationStatusEnum.FLAGGED, None, warnings)

    error = validate_embedding(candidate)
    if error:
        warnings.append(f"Face embedding rejected: {error}")
        return FaceCheck(VerificationStatusEnum.FLAGGED, None, warnings)

    try:
        result = verify(candidate, enrolled, threshold)
    except ValueError as e:
        logger.warning("Face verification unavailable: %s", e)
        warnings.append("Face verification unavailable; attendance flagged for review")
        return FaceCheck(VerificationStatusEnum.FLAGGED, None, warnings)

    similarity = round(result.similarity, 4)
    if not quality_passed:
        warnings.append("Selfie failed the quality check; attendance flagged for review")
        return FaceCheck(VerificationStatusEnum.FLAGGED, similarity, warnings)
    if not result.passed:
        warnings.append(f"Face similarity {similarity:.2f} is below the threshold; attendance flagged for review")
        return FaceCheck(VerificationStatusEnum.FLAGGED, similarity, warnings)

    return FaceCheck(VerificationStatusEnum.VERIFIED, similarity, warnings)
