"""Session and correlation engine of the relay."""

from .core import APP_DISCONNECTED, REQUEST_TIMED_OUT, RelayCommand, RelayCore
from .correlation import CorrelationTable, DuplicateRequestError, PendingCorrelation
from .registry import Connection, Resolution, ResolutionStatus, Role, Session, SessionRegistry

__all__ = [
    "APP_DISCONNECTED",
    "REQUEST_TIMED_OUT",
    "Connection",
    "CorrelationTable",
    "DuplicateRequestError",
    "PendingCorrelation",
    "RelayCommand",
    "RelayCore",
    "Resolution",
    "ResolutionStatus",
    "Role",
    "Session",
    "SessionRegistry",
]
