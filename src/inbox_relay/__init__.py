"""inbox-relay: multi-tenant mailbox synchronisation and outbound delivery."""

__all__ = ["__version__"]

__version__ = "0.1.0"
