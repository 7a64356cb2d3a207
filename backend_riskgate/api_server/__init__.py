"""HTTP surface (FastAPI) over the gate service."""
