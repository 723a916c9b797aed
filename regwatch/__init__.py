"""regwatch: discovery and ingestion of regulatory content from government sources."""

__version__ = "0.1.0"
