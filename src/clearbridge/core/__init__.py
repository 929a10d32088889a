"""Core infrastructure: configuration, logging, key extraction, and payload templates."""
