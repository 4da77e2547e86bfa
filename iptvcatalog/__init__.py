"""Playlist ingestion, classification, grouping and caching for IPTV clients."""

__version__ = "0.1.0"
