"""CoreOS image installer (streaming, verified).

Core design goals:
- The image is never stored whole in memory or on local disk
- Signature verification runs concurrently with decompression and writing
- A run never reports success for an unverified or corrupt image
- Errors travel back to the caller as results, not process exits
- Centralized logging and a recorded run state
"""

__all__ = []
