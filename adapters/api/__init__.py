"""HTTP adapter: FastAPI application, authentication and request schemas."""
