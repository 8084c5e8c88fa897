"""Share chain types, ckpool message parsing and bitcoin block building for a peer-to-peer mining pool."""

__version__ = "0.1.0"

__all__ = ["blockdata", "builders", "ckpool_socket", "genesis", "messages", "shares"]