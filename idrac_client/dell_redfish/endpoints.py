"""Redfish paths the core layer is allowed to hardcode.

Everything else is reached through ``@odata.id`` links and ``Location``
headers returned by the iDRAC itself.
"""

SERVICE_ROOT = "/redfish/v1"

# RedfishVersion at or above this exposes sessions under SessionService
SESSION_SERVICE_MIN_VERSION = (1, 17, 0)
SESSION_SERVICE_SESSIONS = "/redfish/v1/SessionService/Sessions"
LEGACY_SESSIONS = "/redfish/v1/Sessions"

MANAGER = "/redfish/v1/Managers/iDRAC.Embedded.1"
JOBS = "/redfish/v1/Managers/iDRAC.Embedded.1/Jobs"
JOB = "/redfish/v1/Managers/iDRAC.Embedded.1/Jobs/{job_id}"
TASK = "/redfish/v1/TaskService/Tasks/{task_id}"

EXPORT_SCP = "/redfish/v1/Managers/iDRAC.Embedded.1/Actions/Oem/EID_674_Manager.ExportSystemConfiguration"
IMPORT_SCP = "/redfish/v1/Managers/iDRAC.Embedded.1/Actions/Oem/EID_674_Manager.ImportSystemConfiguration"

# Thin domain helpers
SYSTEM = "/redfish/v1/Systems/System.Embedded.1"
SYSTEM_RESET = "/redfish/v1/Systems/System.Embedded.1/Actions/ComputerSystem.Reset"
MANAGER_ETHERNET = "/redfish/v1/Managers/iDRAC.Embedded.1/EthernetInterfaces"
DELETE_JOB_QUEUE = "/redfish/v1/Dell/Managers/iDRAC.Embedded.1/DellJobService/Actions/DellJobService.DeleteJobQueue"
LC_REMOTE_SERVICES_STATUS = (
    "/redfish/v1/Dell/Managers/iDRAC.Embedded.1/DellLCService/Actions/DellLCService.GetRemoteServicesAPIStatus"
)


def parse_redfish_version(version: str):
    """'1.17.0' -> (1, 17, 0); unparsable parts count as 0."""
    parts = []
    for piece in (version or "").split(".")[:3]:
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def session_collection_for(version: str) -> str:
    if parse_redfish_version(version) >= SESSION_SERVICE_MIN_VERSION:
        return SESSION_SERVICE_SESSIONS
    return LEGACY_SESSIONS
