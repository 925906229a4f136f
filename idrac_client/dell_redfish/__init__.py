"""
Dell iDRAC Redfish core

Session negotiation, the authenticated request executor, job/task polling
and System Configuration Profile handling. Everything here runs through the
idrac_client.Client that owns it:
- one SessionState per client (token vs direct Basic Auth mode)
- one retry budget per authenticated request
- hard poll ceilings on every wait
"""

__version__ = "1.0.0"

from .adapter import DellRedfishAdapter
from .auth import SessionAuthenticator
from .helpers import OperationTracker
from .operations import DellOperations
from .scp import ScpCodec
from .errors import (
    DellRedfishError,
    AuthenticationError,
    SessionLimitExceeded,
    TransientConnectionError,
    ProtocolViolation,
    OperationFailed,
    OperationTimeout,
    RetryBudgetExhausted,
    DellErrorCodes,
    map_dell_error,
)

__all__ = [
    "DellRedfishAdapter",
    "SessionAuthenticator",
    "OperationTracker",
    "DellOperations",
    "ScpCodec",
    "DellRedfishError",
    "AuthenticationError",
    "SessionLimitExceeded",
    "TransientConnectionError",
    "ProtocolViolation",
    "OperationFailed",
    "OperationTimeout",
    "RetryBudgetExhausted",
    "DellErrorCodes",
    "map_dell_error",
]
