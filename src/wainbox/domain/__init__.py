"""Ingestion pipeline: message store, status reconciliation, contact ledger."""
