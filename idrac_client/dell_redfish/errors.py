"""
Dell iDRAC Error Taxonomy

Typed errors raised by the session, request, polling and SCP layers, plus
mapping of Dell "@Message.ExtendedInfo" bodies to retry guidance.
"""

from typing import Any, Dict, List, Optional


class DellRedfishError(Exception):
    """Base exception for Dell Redfish operations"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        extended_info: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.extended_info = extended_info or []
        super().__init__(self.message)


class AuthenticationError(DellRedfishError):
    """No login strategy produced a usable session"""


class SessionLimitExceeded(AuthenticationError):
    """iDRAC refused a new session because the session quota is used up"""

    def __init__(self, message: str = "Maximum number of user sessions reached", **kwargs):
        super().__init__(message, error_code="SESSION_LIMIT", **kwargs)


class TransientConnectionError(DellRedfishError):
    """Connection refused, TLS failure or timeout talking to the iDRAC"""


class ProtocolViolation(DellRedfishError):
    """Response shape the client cannot work with; never retried"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "PROTOCOL_VIOLATION")
        super().__init__(message, **kwargs)


class OperationFailed(DellRedfishError):
    """Job or task reached a failed terminal state"""

    def __init__(self, message: str, status=None, **kwargs):
        kwargs.setdefault("error_code", "OPERATION_FAILED")
        super().__init__(message, **kwargs)
        self.status = status

    @property
    def messages(self) -> List[str]:
        if self.status is not None:
            return list(self.status.messages)
        return [m.get("Message", "") for m in self.extended_info]


class OperationTimeout(DellRedfishError):
    """Polling budget exhausted before a terminal state was seen"""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        kwargs.setdefault("error_code", "TIMEOUT")
        super().__init__(message, **kwargs)
        self.attempts = attempts


class RetryBudgetExhausted(DellRedfishError):
    """Authenticated request gave up after using its shared retry budget"""

    def __init__(self, message: str, attempts: int, last_failure=None, **kwargs):
        kwargs.setdefault("error_code", "MAX_RETRIES_EXCEEDED")
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_failure = last_failure


SESSION_LIMIT_MARKER = "maximum number of user sessions"


class DellErrorCodes:
    """
    Dell iDRAC conditions the client knows how to react to.
    Reference: Dell iDRAC Redfish documentation
    """

    RAC0508 = {
        "code": "RAC0508",
        "message": "iDRAC is performing another configuration export. Wait and retry.",
        "retry": True,
        "wait_seconds": 30,
    }

    RAC0509 = {
        "code": "RAC0509",
        "message": "iDRAC is performing another configuration import. Wait and retry.",
        "retry": True,
        "wait_seconds": 30,
    }

    JOB_RUNNING = {
        "code": "JOB_RUNNING",
        "message": "Another job operation is already running. Wait and retry.",
        "retry": True,
        "wait_seconds": 60,
    }

    JOB001 = {
        "code": "JOB001",
        "message": "Job queue is full. Clear completed jobs or wait for current jobs to finish.",
        "retry": True,
        "wait_seconds": 60,
    }

    RAC0218 = {
        "code": "RAC0218",
        "message": "The maximum number of user sessions is reached.",
        "retry": False,
    }

    AUTH001 = {
        "code": "AUTH001",
        "message": "Authentication failed. Check username and password.",
        "retry": False,
    }

    AUTH002 = {
        "code": "AUTH002",
        "message": "Session expired. Re-authenticate and retry.",
        "retry": True,
        "wait_seconds": 5,
    }

    TIMEOUT = {
        "code": "TIMEOUT",
        "message": "Operation timed out. iDRAC may be busy or unresponsive.",
        "retry": True,
        "wait_seconds": 30,
    }


def extract_extended_info(error_response: Any) -> List[Dict[str, Any]]:
    """
    Return the vendor "@Message.ExtendedInfo" entries of an error body verbatim.

    Dell places them under ``error`` for failed requests and at the top level
    for some action responses; both are accepted.
    """
    if not isinstance(error_response, dict):
        return []

    candidates = []
    error_obj = error_response.get("error")
    if isinstance(error_obj, dict):
        candidates.append(error_obj.get("@Message.ExtendedInfo"))
    candidates.append(error_response.get("@Message.ExtendedInfo"))

    for info in candidates:
        if isinstance(info, list):
            return [entry for entry in info if isinstance(entry, dict)]
    return []


def extended_messages(error_response: Any) -> List[str]:
    return [e.get("Message", "") for e in extract_extended_info(error_response) if e.get("Message")]


def map_dell_error(error_response: dict) -> dict:
    """
    Map Dell error response to error info with retry guidance.

    Args:
        error_response: Parsed JSON error body from iDRAC

    Returns:
        dict with keys: code, message, retry, wait_seconds
    """
    error_code = None
    error_message = ""

    extended_info = extract_extended_info(error_response)
    if extended_info:
        first_error = extended_info[0]
        error_code = (first_error.get("MessageId") or "").split(".")[-1]  # "IDRAC.2.8.RAC0508" -> "RAC0508"
        error_message = " ".join(e.get("Message", "") for e in extended_info)

    if not error_code and isinstance(error_response, dict) and isinstance(error_response.get("error"), dict):
        error_obj = error_response["error"]
        error_code = error_obj.get("code", "")
        error_message = error_message or error_obj.get("message", "")

    if error_code:
        for attr_name in dir(DellErrorCodes):
            if not attr_name.startswith("_"):
                error_info = getattr(DellErrorCodes, attr_name)
                if isinstance(error_info, dict) and error_info.get("code") == error_code:
                    return error_info

    error_message_lower = error_message.lower()

    if "existing configuration job is already in progress" in error_message_lower:
        return DellErrorCodes.RAC0508

    if "export" in error_message_lower and "in progress" in error_message_lower:
        return DellErrorCodes.RAC0508

    if "import" in error_message_lower and "in progress" in error_message_lower:
        return DellErrorCodes.RAC0509

    if "job operation is already running" in error_message_lower:
        return DellErrorCodes.JOB_RUNNING

    if "job queue" in error_message_lower or "queue full" in error_message_lower:
        return DellErrorCodes.JOB001

    if SESSION_LIMIT_MARKER in error_message_lower:
        return DellErrorCodes.RAC0218

    if "session" in error_message_lower and "expired" in error_message_lower:
        return DellErrorCodes.AUTH002

    if "authentication" in error_message_lower or "unauthorized" in error_message_lower:
        return DellErrorCodes.AUTH001

    if "timeout" in error_message_lower or "timed out" in error_message_lower:
        return DellErrorCodes.TIMEOUT

    return {
        "code": error_code or "UNKNOWN",
        "message": error_message or "Unknown error occurred",
        "retry": False,
        "wait_seconds": 0,
    }


def parse_error_response(response) -> str:
    """First vendor message of a failed response, or a status/body summary."""
    try:
        data = response.json()
    except ValueError:
        return f"Status: {response.status_code} - {response.text}"

    messages = extended_messages(data)
    if messages:
        return messages[0]
    if isinstance(data, dict) and isinstance(data.get("error"), dict) and data["error"].get("message"):
        return data["error"]["message"]
    return f"Status: {response.status_code} - {response.text}"
