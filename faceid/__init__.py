"""Face identity service: align, embed and match faces against named identities.

Main entry points:
    - IdentityService / create_identity_service: enroll and recognize faces
    - IdentityStore: unique named embeddings with nearest-neighbor search
    - create_app: FastAPI application over the service
"""

from faceid.aligner import CanonicalAligner
from faceid.interfaces import IdentityRecord, KeypointSet, SimilarityTransform
from faceid.matcher import IdentityMatcher
from faceid.store import IdentityStore, InMemoryStorageBackend, NpzStorageBackend
from faceid.transform import REFERENCE_TEMPLATE, estimate_similarity
from faceid.utils import l2_normalize

__version__ = "0.1.0"

__all__ = [
    "CanonicalAligner",
    "IdentityMatcher",
    "IdentityRecord",
    "IdentityStore",
    "InMemoryStorageBackend",
    "KeypointSet",
    "NpzStorageBackend",
    "REFERENCE_TEMPLATE",
    "SimilarityTransform",
    "estimate_similarity",
    "l2_normalize",
]
