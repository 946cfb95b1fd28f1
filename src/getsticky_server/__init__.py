"""GetSticky board server: real-time board sync and Claude queries over websockets."""

__version__ = "0.4.0"
