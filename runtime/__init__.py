"""
Runtime package for the LED-Sync server.

This package contains:
- API layer (FastAPI server + routes)
- Stores (the append-only LED state log)
- Models (Pydantic models for records and HTTP responses)
"""
