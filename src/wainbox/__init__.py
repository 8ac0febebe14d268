"""WhatsApp Business webhook ingestion: message log and contact roster."""

__version__ = "0.1.0"
