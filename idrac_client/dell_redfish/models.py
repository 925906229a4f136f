"""
Value types shared by the session, request, polling and SCP layers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AuthMode(Enum):
    """How requests are authenticated"""
    TOKEN_AUTH = "token"          # X-Auth-Token from a Redfish session
    BASIC_AUTH_DIRECT = "direct"  # Basic Auth on every request, no session


@dataclass
class SessionState:
    """Auth state owned by exactly one Client"""
    token: Optional[str] = None
    location: Optional[str] = None
    mode: AuthMode = AuthMode.TOKEN_AUTH
    sessions_maxed: bool = False

    @property
    def direct_mode(self) -> bool:
        return self.mode is AuthMode.BASIC_AUTH_DIRECT

    def clear(self):
        self.token = None
        self.location = None


class OperationKind(Enum):
    JOB = "job"    # /redfish/v1/Managers/iDRAC.Embedded.1/Jobs/JID_xxx
    TASK = "task"  # /redfish/v1/TaskService/Tasks/JID_xxx


@dataclass(frozen=True)
class OperationHandle:
    id: str
    kind: OperationKind
    path: str


class OperationState(Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OperationState.COMPLETED,
            OperationState.COMPLETED_WITH_ERRORS,
            OperationState.FAILED,
        )


@dataclass
class OperationStatus:
    """Snapshot of one poll of a job or task"""
    state: OperationState
    percent_complete: Optional[int] = None
    messages: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.state is OperationState.COMPLETED


@dataclass
class ConfigAttribute:
    name: str
    value: Any
    set_on_import: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Name": self.name,
            "Value": self.value,
            "Set On Import": "True" if self.set_on_import else "False",
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigAttribute":
        return cls(
            name=data.get("Name", ""),
            value=data.get("Value"),
            set_on_import=str(data.get("Set On Import", "True")).lower() == "true",
        )


@dataclass
class ConfigComponent:
    """One FQDD node of a System Configuration Profile"""
    fqdd: str
    attributes: List[ConfigAttribute] = field(default_factory=list)
    components: List["ConfigComponent"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        bundle: Dict[str, Any] = {"FQDD": self.fqdd}
        if self.components:
            bundle["Components"] = [c.to_dict() for c in self.components]
        if self.attributes:
            bundle["Attributes"] = [a.to_dict() for a in self.attributes]
        return bundle

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigComponent":
        return cls(
            fqdd=data.get("FQDD", ""),
            attributes=[ConfigAttribute.from_dict(a) for a in data.get("Attributes") or []],
            components=[cls.from_dict(c) for c in data.get("Components") or []],
        )

    def get(self, name: str) -> Optional[Any]:
        """Value of the first attribute called ``name``"""
        for attr in self.attributes:
            if attr.name == name:
                return attr.value
        return None


SCP_DOCUMENT_KEY = "SystemConfiguration"


@dataclass
class ConfigProfile:
    """An exported (or about to be imported) System Configuration Profile"""
    document: Optional[Dict[str, Any]]
    raw: str = ""
    export_format: str = "JSON"

    @property
    def components(self) -> List[ConfigComponent]:
        if not self.document:
            return []
        body = self.document.get(SCP_DOCUMENT_KEY) or {}
        return [ConfigComponent.from_dict(c) for c in body.get("Components") or []]


class FailureClass(Enum):
    AUTH_EXPIRED = "AuthExpired"
    CONNECTION = "Connection"
    TRANSIENT = "Transient"
    FATAL = "Fatal"


@dataclass
class RetryContext:
    """Attempt bookkeeping for a single authenticated request"""
    max_attempts: int
    base_delay: float = 1.0
    attempt: int = 0
    last_failure: Optional[FailureClass] = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def record(self, failure: FailureClass):
        self.last_failure = failure
