"""
Configuration settings for the Owl Face Recognition service
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Base directories
BASE_DIR = Path(__file__).resolve().parent.parent
MODELS_DIR = BASE_DIR / "models"

# Load environment variables from .env file
load_dotenv(BASE_DIR / ".env")

# =============================================================================
# Database Configuration
# =============================================================================
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", 5432))
POSTGRES_DB = os.getenv("POSTGRES_DB", "owlfacerec")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}"
    f"@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 5))

# =============================================================================
# Embedding Model Configuration
# =============================================================================
# ArcFace ResNet100 from the ONNX model zoo, 512-d output
MODEL_PATH = Path(os.getenv("MODEL_PATH", MODELS_DIR / "arcfaceresnet100-8.onnx"))

# Model input (width, height)
MODEL_INPUT_SIZE = (112, 112)

# 0 lets ONNX Runtime pick the thread count
ONNX_INTRA_OP_THREADS = int(os.getenv("ONNX_INTRA_OP_THREADS", 0))

# Funnel all inference calls through one lock (for non-reentrant runtimes)
SERIALIZE_INFERENCE = os.getenv("SERIALIZE_INFERENCE", "false").lower() == "true"

# Worker threads for decode, inference and scans
INFERENCE_WORKERS = int(os.getenv("INFERENCE_WORKERS", 4))

# =============================================================================
# Similarity Search Configuration
# =============================================================================
# Minimum cosine similarity for a match
DEFAULT_THRESHOLD = float(os.getenv("DEFAULT_THRESHOLD", 0.7))

# Maximum matches returned per search
DEFAULT_LIMIT = int(os.getenv("DEFAULT_LIMIT", 10))

# Seconds to wait for the store lock before giving up
STORE_LOCK_TIMEOUT = float(os.getenv("STORE_LOCK_TIMEOUT", 30))

# Origin tag column width
MAX_ORIGIN_LENGTH = 64

# =============================================================================
# Server / Logging
# =============================================================================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# =============================================================================
# API Configuration
# =============================================================================
API_TITLE = "Owl Face Recognition API"
API_DESCRIPTION = """
Face registration and search powered by ArcFace (ONNX Runtime) and an
in-memory cosine similarity store, with PostgreSQL for durable storage.

## Features
- **Register**: Store the embedding of a face image under a target UUID
- **Search**: Find the registered targets closest to a face image

## Pipeline
- Decode, resize to 112x112, BGR planar tensor scaled to [-1, 1]
- ArcFace ResNet100 embedding (512 values)
- Exact cosine similarity over every stored embedding
"""
API_VERSION = "1.0.0"
