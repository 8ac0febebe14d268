"""WhatsApp Business payload parsing and normalization."""
