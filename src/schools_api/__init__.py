"""School records import service."""
