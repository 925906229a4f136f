"""
iDRAC Redfish client.

    from idrac_client import Client

    with Client.connect("10.0.0.5", "root", "calvin") as client:
        status = client.wait_for_job("JID_123456789012")
"""

__version__ = "1.0.0"

from .client import Client
from .dell_redfish import (
    DellOperations,
    DellRedfishError,
    AuthenticationError,
    SessionLimitExceeded,
    TransientConnectionError,
    ProtocolViolation,
    OperationFailed,
    OperationTimeout,
    RetryBudgetExhausted,
)

__all__ = [
    "Client",
    "DellOperations",
    "DellRedfishError",
    "AuthenticationError",
    "SessionLimitExceeded",
    "TransientConnectionError",
    "ProtocolViolation",
    "OperationFailed",
    "OperationTimeout",
    "RetryBudgetExhausted",
]
