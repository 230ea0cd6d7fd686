"""FastAPI application for QueryDesk."""
