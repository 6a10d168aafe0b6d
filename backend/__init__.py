"""Agent Pulse server: FastAPI app, ingestion boundary, store and live distribution."""
