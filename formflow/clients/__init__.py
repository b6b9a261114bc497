from .directus import DirectusClient, DirectusError

__all__ = ["DirectusClient", "DirectusError"]
