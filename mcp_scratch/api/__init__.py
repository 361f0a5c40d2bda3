from . import events, mcp

__all__ = [
    "events",
    "mcp",
]
