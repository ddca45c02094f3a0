"""High-level services for the face identity pipeline.

This package contains the service that orchestrates alignment, embedding,
and matching for the HTTP layer and scripts.
"""

from faceid.services.identity import IdentityService, create_identity_service

__all__ = [
    "IdentityService",
    "create_identity_service",
]
