"""tmz: local-first terminal client for Teams chats."""

__version__ = "0.3.0"
