"""Fetching, URL handling and content classification for discovery."""
