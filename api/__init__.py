"""Citewatch HTTP API (FastAPI). The app lives in api.scan."""
