"""
Owl Face Recognition Service

A face matching service using:
- ArcFace (ONNX Runtime) for 512-d face embeddings
- An in-memory exact cosine similarity store
- PostgreSQL for durable embedding storage
- FastAPI for RESTful API
"""

__version__ = "1.0.0"
