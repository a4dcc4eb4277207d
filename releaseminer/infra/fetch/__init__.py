from .http import configure_transfer_permits, fetch, get_session, is_connection_reset

__all__ = ["configure_transfer_permits", "fetch", "get_session", "is_connection_reset"]
