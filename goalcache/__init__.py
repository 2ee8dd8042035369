"""goalcache — incremental local cache of personal tracking data."""

__version__ = "0.1.0"
