"""
System Configuration Profile (SCP) export, build and import.

Dell pattern:
- POST .../EID_674_Manager.ExportSystemConfiguration, poll the task from the
  Location header; the final poll answers with the profile itself
- POST .../EID_674_Manager.ImportSystemConfiguration with an ImportBuffer,
  poll the task until the import is applied
"""

import copy
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Union

from idrac_client.utils import _safe_json_parse, has_body
from . import endpoints
from .errors import (
    DellRedfishError,
    OperationFailed,
    OperationTimeout,
    ProtocolViolation,
    extract_extended_info,
    map_dell_error,
    parse_error_response,
)
from .models import (
    SCP_DOCUMENT_KEY,
    ConfigAttribute,
    ConfigComponent,
    ConfigProfile,
    OperationKind,
    OperationState,
    OperationStatus,
)

# iDRAC is busy with another configuration job; resubmit after the vendor wait
BUSY_ERROR_CODES = ("RAC0508", "RAC0509", "JOB_RUNNING")

SCP_METADATA_KEYS = ("Comments", "TimeStamp", "ServiceTag", "Model")

# Attribute groups stripped before a targeted re-import to keep the buffer small
EXCLUDED_ATTRIBUTE_PREFIXES = (
    "User", "Telemetry", "SecurityCertificate", "AutoUpdate", "PCIe", "LDAP", "ADGroup", "ActiveDirectory",
    "IPMILan", "EmailAlert", "SNMP", "IPBlocking", "IPMI", "Security", "RFS", "OS-BMC", "SupportAssist",
    "Redfish", "RedfishEventing", "Autodiscovery", "SEKM-LKC", "Telco-EdgeServer", "8021XSecurity", "SPDM",
    "InventoryHash", "RSASecurID2FA", "USB", "NIC", "IPv6", "NTP", "Logging", "IOIDOpt", "SSHCrypto",
    "RemoteHosts", "SysLog", "Time", "SmartCard", "ACME", "ServiceModule", "Lockdown",
    "DefaultCredentialMitigation", "AutoOSLockGroup", "LocalSecurity", "IntegratedDatacenter",
    "SecureDefaultPassword.1#ForceChangePassword", "SwitchConnectionView.1#Enable", "GroupManager.1",
    "ASRConfig.1#Enable", "SerialCapture.1#Enable", "CertificateManagement.1",
    "Update", "SSH", "SysInfo", "GUI",
)

ProfileInput = Union[ConfigProfile, ConfigComponent, List[Any], Dict[str, Any], str]


class ScpCodec:
    """Builds, exports and imports System Configuration Profiles"""

    def __init__(
        self,
        adapter,
        tracker,
        logger: logging.Logger,
        max_export_submits: int = 10,
        task_max_polls: int = 120,
        task_poll_interval: float = 5,
    ):
        """
        Args:
            adapter: DellRedfishAdapter for the POSTs
            tracker: OperationTracker that follows the resulting tasks
            logger: Logger instance for operation logging
            max_export_submits: Ceiling on export resubmissions while the iDRAC is busy
            task_max_polls: Default poll ceiling for export/import tasks
            task_poll_interval: Default seconds between task polls
        """
        self.adapter = adapter
        self.tracker = tracker
        self.logger = logger
        self.max_export_submits = max_export_submits
        self.task_max_polls = task_max_polls
        self.task_poll_interval = task_poll_interval

    def make(
        self,
        fqdd: str,
        attributes: Optional[Dict[str, Any]] = None,
        components: Optional[Iterable[Union[ConfigComponent, Dict[str, Any]]]] = None,
    ) -> ConfigComponent:
        """
        Build one SCP component.

        - int values are stringified (bools are left alone)
        - a list value becomes one attribute per element, all with the same name
        - a dict value becomes child components, one per key, the key being the FQDD
        - every attribute is marked "Set On Import"
        """
        children = [
            c if isinstance(c, ConfigComponent) else ConfigComponent.from_dict(c)
            for c in components or []
        ]
        attrs: List[ConfigAttribute] = []

        for name, value in (attributes or {}).items():
            if isinstance(value, dict):
                for child_fqdd, child_attributes in value.items():
                    children.append(self.make(child_fqdd, child_attributes))
            elif isinstance(value, (list, tuple)):
                attrs.extend(ConfigAttribute(name, _scp_value(v)) for v in value)
            else:
                attrs.append(ConfigAttribute(name, _scp_value(value)))

        return ConfigComponent(fqdd=fqdd, attributes=attrs, components=children)

    def export(
        self,
        target: str = "ALL",
        export_format: str = "JSON",
        max_polls: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> ConfigProfile:
        """
        Export Server Configuration Profile (SCP).

        Args:
            target: Export target (ALL, IDRAC, BIOS, NIC, RAID)
            export_format: JSON or XML
            max_polls: Task poll ceiling (defaults to the codec's)
            poll_interval: Seconds between task polls

        Returns:
            ConfigProfile: The exported profile

        Raises:
            ProtocolViolation: No Location header, or the finished task carried no profile
            OperationTimeout: iDRAC stayed busy for every submit, or the task never finished
            DellRedfishError: The iDRAC rejected the export
        """
        payload = {"ExportFormat": export_format, "ShareParameters": {"Target": target}}
        response = None

        for submit in range(1, self.max_export_submits + 1):
            self.logger.info(f"Exporting System Configuration ({target}), try {submit}...")
            response = self.adapter.execute("POST", endpoints.EXPORT_SCP, body=payload)

            if response.status_code < 400:
                break

            error_data = _safe_json_parse(response)
            error_info = map_dell_error(error_data)
            if error_info.get("code") in BUSY_ERROR_CODES and submit < self.max_export_submits:
                wait_seconds = error_info.get("wait_seconds", 30)
                self.logger.warning(f"{error_info['message']} Retrying export in {wait_seconds}s")
                time.sleep(wait_seconds)
                continue

            if error_info.get("code") in BUSY_ERROR_CODES:
                raise OperationTimeout(
                    f"Failed exporting SCP after {submit} tries: {error_info['message']}",
                    attempts=submit,
                    status_code=response.status_code,
                    extended_info=extract_extended_info(error_data),
                )

            raise DellRedfishError(
                message=f"Failed to export SCP: {parse_error_response(response)}",
                error_code=error_info.get("code"),
                status_code=response.status_code,
                extended_info=extract_extended_info(error_data),
            )

        handle = self.tracker.handle_for(response, OperationKind.TASK)
        result = self.tracker.wait_for_task(
            handle,
            max_attempts=max_polls or self.task_max_polls,
            poll_interval=poll_interval if poll_interval is not None else self.task_poll_interval,
            operation_name="Export SCP",
        )

        if not isinstance(result, ConfigProfile):
            raise ProtocolViolation(
                f"Failed exporting SCP, task {handle.id} finished without {SCP_DOCUMENT_KEY} "
                f"(TaskState: {result.raw.get('TaskState')}, TaskStatus: {result.raw.get('TaskStatus')})"
            )

        self.logger.info(f"SCP export complete ({len(result.raw)} bytes, {result.export_format})")
        return result

    def submit_import(
        self,
        profile: ProfileInput,
        target: str = "ALL",
        reboot: bool = False,
        shutdown_type: str = "Forced",
    ):
        """
        POST the import action and return the handle of the import task.

        Raises:
            OperationFailed: The iDRAC rejected the buffer outright
            ProtocolViolation: Neither a task Location nor an error body came back
        """
        payload = {
            "ImportBuffer": import_buffer(profile),
            "ShareParameters": {"Target": target},
            "ShutdownType": shutdown_type,
            "HostPowerState": "On" if reboot else "Off",
        }

        self.logger.info(f"Importing System Configuration ({target}, ShutdownType={shutdown_type})...")
        response = self.adapter.execute("POST", endpoints.IMPORT_SCP, body=payload)

        location = response.headers.get("Location")
        if response.status_code >= 400 or (has_body(response) and not location):
            error_data = _safe_json_parse(response)
            message = parse_error_response(response)
            self.logger.error(f"Failed importing SCP: {message}")
            raise OperationFailed(
                f"Failed importing SCP: {message}",
                status_code=response.status_code,
                extended_info=extract_extended_info(error_data),
            )

        if not location:
            raise ProtocolViolation(
                f"Failed importing SCP, invalid iDRAC response (status {response.status_code}, no Location)",
                status_code=response.status_code,
            )

        return self.tracker.handle_for(location, OperationKind.TASK)

    def import_profile(
        self,
        profile: ProfileInput,
        target: str = "ALL",
        reboot: bool = False,
        shutdown_type: str = "Forced",
        max_polls: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> OperationStatus:
        """Import a profile and wait for the import task to finish."""
        handle = self.submit_import(profile, target=target, reboot=reboot, shutdown_type=shutdown_type)
        result = self.tracker.wait_for_task(
            handle,
            max_attempts=max_polls or self.task_max_polls,
            poll_interval=poll_interval if poll_interval is not None else self.task_poll_interval,
            operation_name="Import SCP",
        )
        if isinstance(result, ConfigProfile):
            return OperationStatus(state=OperationState.COMPLETED, raw=result.document or {})
        return result


def _scp_value(value: Any) -> Any:
    # bool is an int subclass but iDRAC expects the literal back
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _component_dict(component: Union[ConfigComponent, Dict[str, Any]]) -> Dict[str, Any]:
    return component.to_dict() if isinstance(component, ConfigComponent) else component


def scp_document(profile: ProfileInput) -> Dict[str, Any]:
    """Wrap components in a {"SystemConfiguration": {"Components": [...]}} document."""
    if isinstance(profile, ConfigProfile):
        if profile.document is None:
            raise ProtocolViolation("XML profiles have no JSON document")
        return profile.document
    if isinstance(profile, dict) and SCP_DOCUMENT_KEY in profile:
        return profile

    components = profile if isinstance(profile, list) else [profile]
    return {SCP_DOCUMENT_KEY: {"Components": [_component_dict(c) for c in components]}}


def import_buffer(profile: ProfileInput) -> str:
    """ImportBuffer string for a profile: raw XML as-is, anything else pretty JSON."""
    if isinstance(profile, str):
        return profile
    if isinstance(profile, ConfigProfile) and profile.document is None:
        return profile.raw
    return json.dumps(scp_document(profile), indent=2)


def profile_components(profile: ProfileInput) -> List[Dict[str, Any]]:
    return list(scp_document(profile)[SCP_DOCUMENT_KEY].get("Components") or [])


def scp_to_hash(components: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """FQDD -> attribute list"""
    return {c.get("FQDD"): c.get("Attributes") for c in components}


def hash_to_scp(fqdd_map: Dict[str, List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [{"FQDD": fqdd, "Attributes": attributes} for fqdd, attributes in fqdd_map.items()]


def merge_scp(scp1, scp2) -> Optional[List[Dict[str, Any]]]:
    """
    Merge two component lists (or single components) by FQDD.

    Attributes present in both are merged by Name, the second profile winning.
    """
    if not scp1 or not scp2:
        return scp1 or scp2

    first = scp_to_hash(scp1 if isinstance(scp1, list) else [scp1])
    second = scp_to_hash(scp2 if isinstance(scp2, list) else [scp2])

    merged = copy.deepcopy(first)
    for fqdd, attributes in second.items():
        existing = merged.get(fqdd)
        if isinstance(existing, list) and isinstance(attributes, list):
            names = [a.get("Name") for a in existing]
            for attr in attributes:
                if attr.get("Name") in names:
                    existing[names.index(attr.get("Name"))] = attr
                else:
                    existing.append(attr)
                    names.append(attr.get("Name"))
        else:
            merged[fqdd] = attributes

    return hash_to_scp(merged)


def set_scp_attribute(scp: Dict[str, Any], name: str, value: Any) -> Dict[str, Any]:
    """
    Copy of an exported profile trimmed for a quick re-import, with one
    attribute of the first component set (added if missing).
    """
    scp_copy = copy.deepcopy(scp)
    body = scp_copy.get(SCP_DOCUMENT_KEY) or {}
    for key in SCP_METADATA_KEYS:
        body.pop(key, None)

    components = body.get("Components") or []
    if not components or components[0].get("Attributes") is None:
        return scp_copy

    attrs = [
        a for a in components[0]["Attributes"]
        if not str(a.get("Name", "")).startswith(EXCLUDED_ATTRIBUTE_PREFIXES)
    ]

    for attr in attrs:
        if attr.get("Name") == name:
            attr["Value"] = value
            attr["Set On Import"] = "True"
            break
    else:
        attrs.append({"Name": name, "Value": value, "Set On Import": "True"})

    components[0]["Attributes"] = attrs
    return scp_copy


def normalize_enabled_value(value: Any) -> str:
    """None/False -> "Disabled", True -> "Enabled", strings compared case-insensitively."""
    if value is None or value is False:
        return "Disabled"
    if value is True:
        return "Enabled"
    if not isinstance(value, str):
        raise ValueError(f"Invalid value for normalize_enabled_value: {value!r}")
    return "Enabled" if value.strip().lower() == "enabled" else "Disabled"
