"""
Dell Redfish Operations

Thin domain operations built on the client's core entry points:
authenticated_request, wait_for_job / wait_for_task and the SCP codec.
"""

import time
from typing import Any, Dict, List, Optional, Union

from idrac_client.utils import _safe_json_parse, first_member_uri
from . import endpoints
from .errors import (
    DellRedfishError,
    OperationFailed,
    OperationTimeout,
    ProtocolViolation,
    extract_extended_info,
    parse_error_response,
)
from .scp import set_scp_attribute


class DellOperations:
    """
    High-level Dell iDRAC operations.

    All operations go through the Client, so they share its session,
    retry budget and logging.
    """

    def __init__(self, client):
        """
        Args:
            client: Connected idrac_client.Client
        """
        self.client = client
        self.logger = client.logger

    # Jobs

    def list_jobs(self) -> List[Dict[str, Any]]:
        """All jobs in the iDRAC job queue, expanded."""
        data = self.client.get_json(f"{endpoints.JOBS}?$expand=*($levels=1)")
        return data.get("Members") or []

    def clear_jobs(self) -> bool:
        """
        Delete every job in the queue one by one.

        Returns:
            bool: True if every delete was accepted
        """
        jobs = self.list_jobs()
        success = True

        for index, job in enumerate(jobs, start=1):
            job_id = job.get("Id")
            self.logger.info(f"Removing {job_id} [{index}/{len(jobs)}]")
            response = self.client.authenticated_request("DELETE", endpoints.JOB.format(job_id=job_id))
            if not 200 <= response.status_code < 300:
                self.logger.warning(f"Failed to delete job {job_id}. Status code: {response.status_code}")
                success = False

        self.logger.info(f"Cleared {len(jobs)} jobs")
        return success

    def force_clear_jobs(self, max_polls: int = 12, poll_interval: float = 10) -> bool:
        """
        Force-clear the job queue (JID_CLEARALL_FORCE) and wait for the
        Lifecycle Controller to report Ready.

        Dell pattern:
        - POST DellJobService.DeleteJobQueue with JobID JID_CLEARALL_FORCE
        - Poll DellLCService.GetRemoteServicesAPIStatus until LCStatus is Ready

        Returns:
            bool: True if LC reached Ready within max_polls

        Raises:
            DellRedfishError: If the iDRAC rejects the force clear
        """
        response = self.client.authenticated_request(
            "POST", endpoints.DELETE_JOB_QUEUE, body={"JobID": "JID_CLEARALL_FORCE"}
        )
        if not 200 <= response.status_code < 300:
            raise DellRedfishError(
                f"Failed to force-clear job queue: {parse_error_response(response)}",
                status_code=response.status_code,
                extended_info=extract_extended_info(_safe_json_parse(response)),
            )

        self.logger.info("Job queue force-cleared, waiting for LC status to be Ready...")

        for attempt in range(1, max_polls + 1):
            lc_response = self.client.authenticated_request("POST", endpoints.LC_REMOTE_SERVICES_STATUS, body={})
            if 200 <= lc_response.status_code < 300:
                status = _safe_json_parse(lc_response).get("LCStatus")
                if status == "Ready":
                    self.logger.info("LC Status is Ready")
                    return True
                self.logger.info(f"Current LC Status: {status}. Waiting...")

            if attempt < max_polls:
                time.sleep(poll_interval)

        self.logger.warning("LC status did not reach Ready state within timeout")
        return False

    # Power

    def get_power_state(self) -> Optional[str]:
        return self.client.get_json(endpoints.SYSTEM).get("PowerState")

    def power_on(self) -> bool:
        if self.get_power_state() == "On":
            self.logger.info("Server is already powered on")
            return True
        self._reset("On")
        self.logger.info("Server power on command sent successfully")
        return True

    def power_off(self, graceful: bool = True, max_polls: int = 12, poll_interval: float = 10) -> bool:
        """
        Power off the host.

        A graceful shutdown is tried first; if the host is still on after
        ``max_polls`` checks the request is reissued as ForceOff.
        """
        if self.get_power_state() == "Off":
            self.logger.info("Server is already powered off")
            return True

        if graceful:
            self._reset("GracefulShutdown")
            for _ in range(max_polls):
                time.sleep(poll_interval)
                if self.get_power_state() == "Off":
                    self.logger.info("Server shut down gracefully")
                    return True
            self.logger.warning("Graceful shutdown did not complete, forcing power off")

        self._reset("ForceOff")
        self.logger.info("Server power off command sent successfully")
        return True

    def _reset(self, reset_type: str):
        response = self.client.authenticated_request(
            "POST", endpoints.SYSTEM_RESET, body={"ResetType": reset_type}
        )
        if not 200 <= response.status_code < 300:
            raise DellRedfishError(
                f"ComputerSystem.Reset ({reset_type}) failed: {parse_error_response(response)}",
                status_code=response.status_code,
                extended_info=extract_extended_info(_safe_json_parse(response)),
            )

    # iDRAC network

    def get_bmc_network(self) -> Dict[str, Any]:
        """IPv4 settings of the iDRAC's first ethernet interface."""
        collection = self.client.get_json(endpoints.MANAGER_ETHERNET)
        interface_path = first_member_uri(collection)
        if not interface_path:
            raise DellRedfishError("No ethernet interfaces found")

        data = self.client.get_json(interface_path)
        ipv4 = (data.get("IPv4Addresses") or [{}])[0]
        return {
            "ipv4_address": ipv4.get("Address"),
            "subnet_mask": ipv4.get("SubnetMask"),
            "gateway": ipv4.get("Gateway"),
            "mode": ipv4.get("AddressOrigin"),
            "mac_address": data.get("MACAddress"),
            "hostname": data.get("HostName"),
            "fqdn": data.get("FQDN"),
            "dns_servers": data.get("NameServers") or [],
        }

    def set_idrac_ip(
        self,
        new_ip: str,
        new_gw: str,
        new_nm: str,
        vnc_password: Optional[str] = None,
        vnc_port: Union[int, str] = 5901,
    ) -> bool:
        """
        Give the iDRAC a static IPv4 address through an SCP import.

        iDRAC 9 keeps static settings under IPv4Static.1, iDRAC 8 under IPv4.1.
        Once the import is submitted the client follows the iDRAC to its new
        address and waits for the import task there.

        Raises:
            DellRedfishError: "Failed configuring static IP: ..." on any failure
        """
        generation = self.client.idrac_generation()
        prefix = "IPv4Static.1" if generation >= 9 else "IPv4.1"
        self.logger.info(f"Setting iDRAC {generation} static IP to {new_ip}/{new_nm} gw {new_gw}")

        try:
            profile = self.client.export_profile(target="iDRAC")
            if profile.document is None:
                raise ProtocolViolation("iDRAC returned an XML profile, JSON was requested")

            scp = set_scp_attribute(profile.document, f"{prefix}#Address", new_ip)
            scp = set_scp_attribute(scp, f"{prefix}#Gateway", new_gw)
            scp = set_scp_attribute(scp, f"{prefix}#Netmask", new_nm)
            scp = set_scp_attribute(scp, "VNCServer.1#Port", str(vnc_port))
            if vnc_password:
                scp = set_scp_attribute(scp, "VNCServer.1#Password", vnc_password)

            handle = self.client.scp.submit_import(scp, target="iDRAC")
            self.client.monitor_cutover(new_ip)
            self.client.wait_for_task(handle)
        except (OperationFailed, OperationTimeout, ProtocolViolation) as e:
            self.logger.error(f"Failed configuring static IP: {e.message}")
            raise DellRedfishError(
                f"Failed configuring static IP: {e.message}",
                error_code=e.error_code,
                status_code=e.status_code,
                extended_info=e.extended_info,
            ) from e

        self.logger.info(f"iDRAC static IP set to {new_ip}")
        return True
