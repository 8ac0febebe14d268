"""HTTP layer around the ingestion pipeline."""
