"""Configuration management for the face identity service.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing application settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Squared L2 distance between unit vectors lies in [0, 4]
MAX_DISTANCE = 4.0


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        ctx_id: Device context ID (-1 for CPU, 0+ for GPU)
        thresh: Maximum squared Euclidean distance accepted as a match (0.0-4.0)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        model_pack: InsightFace model pack name
        embedding_dim: Length of the embedding vectors
        aligned_size: Edge length of the canonical aligned face, in pixels
        api_host: Bind address for the HTTP server
        api_port: Bind port for the HTTP server
    """

    ctx_id: int
    thresh: float
    log_level: str
    model_pack: str
    embedding_dim: int
    aligned_size: int
    api_host: str
    api_port: int

    # Paths
    data_dir: Path
    db_path: Path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        # Get project root (parent of faceid/)
        project_root = Path(__file__).parent.parent

        # Device configuration
        ctx_id = int(os.getenv("CTX_ID", "-1"))

        # Recognition threshold (squared L2 distance)
        thresh = float(os.getenv("THRESH", "0.8"))
        if not 0.0 <= thresh <= MAX_DISTANCE:
            raise ValueError(
                f"THRESH must be between 0.0 and {MAX_DISTANCE}, got {thresh}"
            )

        # Logging configuration
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")

        # Model configuration
        model_pack = os.getenv("MODEL_PACK", "buffalo_l")
        valid_packs = ["buffalo_l", "buffalo_m", "buffalo_s", "buffalo_sc"]
        if model_pack not in valid_packs:
            raise ValueError(f"MODEL_PACK must be one of {valid_packs}, got {model_pack}")

        embedding_dim = int(os.getenv("EMBEDDING_DIM", "512"))
        if embedding_dim < 1:
            raise ValueError(f"EMBEDDING_DIM must be >= 1, got {embedding_dim}")

        aligned_size = int(os.getenv("ALIGNED_SIZE", "112"))
        if aligned_size < 1:
            raise ValueError(f"ALIGNED_SIZE must be >= 1, got {aligned_size}")

        # HTTP server
        api_host = os.getenv("API_HOST", "127.0.0.1")
        api_port = int(os.getenv("API_PORT", "8000"))
        if not 0 < api_port < 65536:
            raise ValueError(f"API_PORT must be in 1-65535, got {api_port}")

        # Paths
        data_dir = project_root / "data"
        db_path = Path(os.getenv("DB_PATH", str(data_dir / "identities.npz")))

        # Ensure the store directory exists
        db_path.parent.mkdir(parents=True, exist_ok=True)

        return cls(
            ctx_id=ctx_id,
            thresh=thresh,
            log_level=log_level,
            model_pack=model_pack,
            embedding_dim=embedding_dim,
            aligned_size=aligned_size,
            api_host=api_host,
            api_port=api_port,
            data_dir=data_dir,
            db_path=db_path,
        )

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Device: {'GPU' if self.ctx_id >= 0 else 'CPU'}:{self.ctx_id},\n"
            f"  Threshold: {self.thresh},\n"
            f"  Log Level: {self.log_level},\n"
            f"  Model: {self.model_pack},\n"
            f"  Embedding Dim: {self.embedding_dim},\n"
            f"  Aligned Size: {self.aligned_size},\n"
            f"  Store: {self.db_path},\n"
            f"  API: {self.api_host}:{self.api_port}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
