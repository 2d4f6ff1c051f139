"""
Owl Face Recognition API

Face registration and search powered by ArcFace (ONNX Runtime) and an
in-memory cosine similarity store, with PostgreSQL for durable storage.

Endpoints:
- POST /register/ - Register a face under a target UUID
- POST /search/ - Find registered faces similar to an image
- GET /health/ - Health check
"""
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from owlface.config import (
    API_TITLE,
    API_DESCRIPTION,
    API_VERSION,
    MODEL_PATH,
    MODEL_INPUT_SIZE,
    ONNX_INTRA_OP_THREADS,
    SERIALIZE_INFERENCE,
    STORE_LOCK_TIMEOUT,
    HOST,
    PORT,
    LOG_LEVEL
)
from owlface.schemas import (
    RegisterRequest,
    RegisterResponse,
    SearchRequest,
    SearchResult,
    SearchResponse,
    HealthResponse,
    ErrorResponse
)
from owlface.exceptions import (
    FaceMatchError,
    DecodeError,
    LockContentionError,
    PersistenceError
)
from owlface.database import async_session_maker, init_db, close_db
from owlface.embedding_service import EmbeddingExtractor, load_model
from owlface.image_processing import decode_base64_image
from owlface.matching_service import MatchingService
from owlface.repository import DatabaseRecordStore
from owlface.vector_store import SimilarityStore

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Client-caused errors map to 4xx, everything else is a server failure
ERROR_STATUS_CODES = {
    DecodeError: 400,
    LockContentionError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Owl Face Recognition API...")

    await init_db()

    session = load_model(MODEL_PATH, intra_op_threads=ONNX_INTRA_OP_THREADS)
    extractor = EmbeddingExtractor(session, serialize_calls=SERIALIZE_INFERENCE)
    dimension = extractor.warmup(MODEL_INPUT_SIZE)

    service = MatchingService(
        extractor=extractor,
        store=SimilarityStore(dimension=dimension, lock_timeout=STORE_LOCK_TIMEOUT),
        persistence=DatabaseRecordStore(async_session_maker)
    )
    await service.load_records()
    app.state.matching_service = service

    logger.info(f"Embeddings store holds {len(service.store)} vectors")
    yield

    # Shutdown
    service.close()
    await close_db()
    logger.info("Shutting down Owl Face Recognition API...")


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_matching_service(request: Request) -> MatchingService:
    """Dependency to get the matching service built at startup."""
    service = getattr(request.app.state, "matching_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is not ready")
    return service


@app.get("/", include_in_schema=False)
async def root(service: MatchingService = Depends(get_matching_service)):
    """Root endpoint with API info."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "embeddings": len(service.store),
        "endpoints": {
            "register": "POST /register/",
            "search": "POST /search/",
            "health": "GET /health/"
        }
    }


@app.get("/health/", response_model=HealthResponse)
async def health_check(service: MatchingService = Depends(get_matching_service)):
    """Health check endpoint."""
    try:
        await service.persistence.count()
        status = "healthy"
    except PersistenceError as e:
        logger.error(f"Database health check failed: {e}")
        status = "degraded"

    return HealthResponse(
        status=status,
        embeddings=len(service.store),
        dimension=service.store.dimension
    )


# ============================================================================
# API 1: REGISTER
# ============================================================================
@app.post(
    "/register/",
    response_model=RegisterResponse,
    status_code=201,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid image"},
        500: {"model": ErrorResponse, "description": "Model or storage failure"}
    },
    summary="Register a face",
    description="""
    Compute the embedding of a face image and store it under a target UUID.

    **Pipeline:**
    1. Base64 decode and image decode
    2. Resize to 112x112, BGR planar tensor scaled to [-1, 1]
    3. ArcFace embedding
    4. Store embedding in PostgreSQL
    5. Add embedding to the in-memory store

    Registering the same target twice keeps both embeddings.
    """
)
async def register(
    payload: RegisterRequest,
    service: MatchingService = Depends(get_matching_service)
):
    """Register the face in the payload under its target UUID."""
    start_time = time.time()
    logger.debug(f"Received registration request for {payload.target_uuid} (origin: '{payload.origin}')")

    image_bytes = decode_base64_image(payload.image_base64)
    await service.register(payload.target_uuid, payload.origin, image_bytes)

    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Registered target {payload.target_uuid} in {processing_time:.1f}ms")

    return RegisterResponse(
        success=True,
        message=f"Face registered for target '{payload.target_uuid}'",
        target_uuid=str(payload.target_uuid),
        total_embeddings=len(service.store)
    )


# ============================================================================
# API 2: SEARCH
# ============================================================================
@app.post(
    "/search/",
    response_model=SearchResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid image"},
        500: {"model": ErrorResponse, "description": "Model failure"}
    },
    summary="Search similar faces",
    description="""
    Find registered faces similar to the input image.

    **Output:**
    - `results`: matches with cosine similarity >= `threshold` (default 0.7),
      highest first, at most `limit` (default 10)
    """
)
async def search(
    payload: SearchRequest,
    service: MatchingService = Depends(get_matching_service)
):
    """Search registered faces similar to the image in the payload."""
    logger.debug("Received search request")

    image_bytes = decode_base64_image(payload.image_base64)
    matches = await service.search(image_bytes, threshold=payload.threshold, limit=payload.limit)

    return SearchResponse(
        results=[
            SearchResult(
                target_uuid=str(match.identifier),
                similarity=match.similarity,
                origin=match.origin
            )
            for match in matches
        ]
    )


# Exception handlers
@app.exception_handler(FaceMatchError)
async def face_match_exception_handler(request, exc):
    """Map pipeline errors to status codes."""
    status_code = next(
        (code for kind, code in ERROR_STATUS_CODES.items() if isinstance(exc, kind)),
        500
    )
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": str(exc)
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTPException",
            "detail": exc.detail
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
