"""
Pydantic models for API request/response schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
import uuid

from owlface.config import MAX_ORIGIN_LENGTH


class RegisterRequest(BaseModel):
    """Schema for registering a face"""
    target_uuid: uuid.UUID = Field(..., description="Identifier of the target")
    image_base64: str = Field(..., min_length=1, description="Base64 encoded face image")
    origin: str = Field(
        ...,
        max_length=MAX_ORIGIN_LENGTH,
        description="Provenance tag (camera, batch, ...)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "target_uuid": "550e8400-e29b-41d4-a716-446655440000",
                "image_base64": "/9j/4AAQSkZJRgABAQAAAQABAAD...",
                "origin": "camera-01"
            }
        }


class RegisterResponse(BaseModel):
    """Schema for register response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    target_uuid: str = Field(..., description="Identifier of the registered target")
    total_embeddings: int = Field(..., description="Embeddings held in memory after registration")


class SearchRequest(BaseModel):
    """Schema for searching similar faces"""
    image_base64: str = Field(..., min_length=1, description="Base64 encoded face image")
    threshold: Optional[float] = Field(
        default=None,
        ge=-1.0,
        le=1.0,
        description="Minimum cosine similarity (default 0.7)"
    )
    limit: Optional[int] = Field(default=None, ge=0, description="Maximum number of results (default 10)")

    class Config:
        json_schema_extra = {
            "example": {
                "image_base64": "/9j/4AAQSkZJRgABAQAAAQABAAD...",
                "threshold": 0.7,
                "limit": 10
            }
        }


class SearchResult(BaseModel):
    """Schema for a single search hit"""
    target_uuid: str = Field(..., description="Identifier of the matched target")
    similarity: float = Field(..., description="Cosine similarity (higher is better)")
    origin: str = Field(..., description="Provenance tag of the matched embedding")


class SearchResponse(BaseModel):
    """Schema for search API response"""
    results: List[SearchResult] = Field(..., description="Matches sorted by similarity")

    class Config:
        json_schema_extra = {
            "example": {
                "results": [
                    {
                        "target_uuid": "550e8400-e29b-41d4-a716-446655440000",
                        "similarity": 0.92,
                        "origin": "camera-01"
                    }
                ]
            }
        }


class HealthResponse(BaseModel):
    """Schema for health check response"""
    status: str = Field(..., description="Service status")
    embeddings: int = Field(..., description="Embeddings held in memory")
    dimension: Optional[int] = Field(default=None, description="Embedding width")


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    detail: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "DecodeError",
                "detail": "Failed to decode image: cannot identify image file"
            }
        }
