"""Database access and storage backends."""
