"""Couch Sync - Replicate source tables into CouchDB / Cloudant."""

__version__ = "1.0.0"
__author__ = "Couch Sync Contributors"

from couch_sync.config import Settings, load_settings

__all__ = ["Settings", "load_settings", "__version__"]
