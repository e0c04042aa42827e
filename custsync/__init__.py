"""custsync — local persistence and backup tier for the customer manager."""

__version__ = "1.2.0"
