"""
Dell Redfish Helpers - Job and task polling

Dell exposes long-running work two ways:
- iDRAC Jobs at /redfish/v1/Managers/iDRAC.Embedded.1/Jobs/{id} (JobState)
- Redfish Tasks at /redfish/v1/TaskService/Tasks/{id} (TaskState/TaskStatus)

Both are polled on a fixed interval with a hard ceiling on the number of polls.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional, Union

import requests

from idrac_client.utils import SCP_XML_PREFIX, _safe_json_parse, redfish_path
from . import endpoints
from .errors import OperationFailed, OperationTimeout, ProtocolViolation, parse_error_response
from .models import (
    SCP_DOCUMENT_KEY,
    ConfigProfile,
    OperationHandle,
    OperationKind,
    OperationState,
    OperationStatus,
)

JOB_STATES = {
    "Completed": OperationState.COMPLETED,
    "CompletedWithErrors": OperationState.COMPLETED_WITH_ERRORS,
    "Failed": OperationState.FAILED,
    "Running": OperationState.RUNNING,
    "New": OperationState.PENDING,
    "Scheduled": OperationState.PENDING,
    "Scheduling": OperationState.PENDING,
    "Starting": OperationState.PENDING,
    "Waiting": OperationState.PENDING,
    "Downloading": OperationState.PENDING,
    "Downloaded": OperationState.PENDING,
    "ReadyForExecution": OperationState.PENDING,
}

TASK_STATES = {
    "Completed": OperationState.COMPLETED,
    "Exception": OperationState.FAILED,
    "Killed": OperationState.FAILED,
    "Cancelled": OperationState.FAILED,
    "Running": OperationState.RUNNING,
    "New": OperationState.PENDING,
    "Pending": OperationState.PENDING,
    "Starting": OperationState.PENDING,
    "Service": OperationState.PENDING,
    "Suspended": OperationState.PENDING,
    "Interrupted": OperationState.PENDING,
    "Stopping": OperationState.RUNNING,
    "Cancelling": OperationState.RUNNING,
}

OperationRef = Union[str, OperationHandle, requests.Response, Dict[str, Any]]


def get_task_uri_from_response(response: Dict[str, Any]) -> Optional[str]:
    """
    Extract task URI from response headers or body.

    Dell pattern: Task URI returned in Location header or @odata.id field.
    For 202 responses, the adapter injects the Location header as _location_header.
    """
    # Location header injected by the adapter wins
    if response.get("_location_header"):
        return response["_location_header"]

    if response.get("@odata.id"):
        return response["@odata.id"]

    task = response.get("Task")
    if isinstance(task, dict) and task.get("@odata.id"):
        return task["@odata.id"]

    for key in ("TaskUri", "Location", "JobUri"):
        if response.get(key):
            return response[key]

    return None


class OperationTracker:
    """Polls iDRAC jobs and tasks until they reach a terminal state"""

    def __init__(self, adapter, logger: logging.Logger):
        """
        Args:
            adapter: DellRedfishAdapter used for every poll
            logger: Logger instance for progress logging
        """
        self.adapter = adapter
        self.logger = logger

    def handle_for(self, ref: OperationRef, kind: OperationKind) -> OperationHandle:
        """
        Build a handle from whatever the caller has: a job id, a Redfish path,
        a full URL, a Location value, a response with a Location header, or a
        response dict from ``request_json``.

        Raises:
            ProtocolViolation: When no job/task reference can be found
        """
        if isinstance(ref, OperationHandle):
            return ref

        if isinstance(ref, requests.Response):
            location = ref.headers.get("Location")
            if not location:
                raise ProtocolViolation(
                    f"Response carries no Location header (status {ref.status_code})",
                    status_code=ref.status_code,
                )
            ref = location
        elif isinstance(ref, dict):
            uri = get_task_uri_from_response(ref)
            if not uri:
                raise ProtocolViolation("Response carries no job or task reference")
            ref = uri

        ref = (ref or "").strip()
        if not ref:
            raise ProtocolViolation("Empty job or task reference")

        path = redfish_path(ref)
        if path.startswith("/"):
            operation_id = path.rstrip("/").rsplit("/", 1)[-1]
        else:
            operation_id = path
            template = endpoints.JOB if kind is OperationKind.JOB else endpoints.TASK
            path = template.format(job_id=operation_id, task_id=operation_id)

        return OperationHandle(id=operation_id, kind=kind, path=path)

    def wait_for_job(
        self,
        job: OperationRef,
        max_attempts: int = 36,
        poll_interval: float = 10,
        operation_name: str = "Job",
    ) -> OperationStatus:
        """
        Poll a Dell Job (JID_xxx) until it completes.

        Dell Job pattern (different from Redfish tasks):
        - Jobs tracked at /redfish/v1/Managers/iDRAC.Embedded.1/Jobs/{job_id}
        - Monitor JobState: New, Scheduled, Running, Completed, Failed

        Args:
            job: Job id, path, URL, Location value or response
            max_attempts: Hard ceiling on polls (36 x 10s is about 6 minutes)
            poll_interval: Seconds between polls
            operation_name: Operation name for logging

        Returns:
            OperationStatus: Completed or CompletedWithErrors (messages attached)

        Raises:
            OperationFailed: Job reached Failed
            OperationTimeout: No terminal state after max_attempts polls
        """
        handle = self.handle_for(job, OperationKind.JOB)
        return self._poll(handle, max_attempts, poll_interval, operation_name)

    def wait_for_task(
        self,
        task: OperationRef,
        max_attempts: int = 120,
        poll_interval: float = 5,
        operation_name: str = "Task",
    ) -> Union[OperationStatus, ConfigProfile]:
        """
        Poll a Redfish task until completion.

        Dell task pattern:
        - POST operation returns Location header with task URI
        - Poll task URI until TaskState is Completed, Exception, or Killed
        - SCP export tasks answer the final poll with the profile itself
          (JSON with a SystemConfiguration key, or raw XML); that is returned
          as a ConfigProfile

        Raises:
            OperationFailed: Task ended in Exception/Killed/Cancelled
            OperationTimeout: No terminal state after max_attempts polls
        """
        handle = self.handle_for(task, OperationKind.TASK)
        return self._poll(handle, max_attempts, poll_interval, operation_name)

    def _poll(self, handle: OperationHandle, max_attempts: int, poll_interval: float, operation_name: str):
        last_progress = None

        for attempt in range(1, max_attempts + 1):
            response = self.adapter.execute("GET", handle.path)

            if handle.kind is OperationKind.TASK:
                profile = self._profile_from(response)
                if profile is not None:
                    self.logger.info(f"{operation_name} {handle.id} returned a configuration profile")
                    return profile

            status = self._status_from(response, handle.kind)

            progress = (status.state, status.percent_complete)
            if progress != last_progress:
                message_text = status.messages[0] if status.messages else ""
                self.logger.info(
                    f"{operation_name} {handle.id} progress: {status.percent_complete or 0}% "
                    f"- {status.state.value} - {message_text}"
                )
                last_progress = progress

            if status.state.is_terminal:
                return self._finish(handle, status, operation_name)

            if attempt < max_attempts:
                time.sleep(poll_interval)

        self.logger.error(f"{operation_name} {handle.id} did not finish after {max_attempts} polls")
        raise OperationTimeout(
            f"{operation_name} {handle.id} did not reach a terminal state after {max_attempts} polls",
            attempts=max_attempts,
        )

    def _finish(self, handle: OperationHandle, status: OperationStatus, operation_name: str) -> OperationStatus:
        if status.state is OperationState.FAILED:
            error_message = "; ".join(status.messages) or f"{operation_name} failed"
            self.logger.error(f"{operation_name} {handle.id} failed: {error_message}")
            raise OperationFailed(
                f"{operation_name} {handle.id} failed: {error_message}",
                status=status,
                extended_info=_extended(status.raw),
            )

        if status.state is OperationState.COMPLETED_WITH_ERRORS:
            self.logger.warning(f"{operation_name} {handle.id} completed with errors: {status.messages}")
        else:
            self.logger.info(f"{operation_name} {handle.id} completed successfully")
        return status

    def _profile_from(self, response: requests.Response) -> Optional[ConfigProfile]:
        if response.status_code != 200:
            return None

        text = response.text or ""
        if text.lstrip().startswith(SCP_XML_PREFIX):
            return ConfigProfile(document=None, raw=text, export_format="XML")

        data = _safe_json_parse(response)
        if SCP_DOCUMENT_KEY in data:
            return ConfigProfile(document=data, raw=text, export_format="JSON")
        return None

    def _status_from(self, response: requests.Response, kind: OperationKind) -> OperationStatus:
        if response.status_code != 200:
            self.logger.warning(f"Status poll returned {response.status_code}: {parse_error_response(response)}")
            return OperationStatus(state=OperationState.UNKNOWN, raw=_safe_json_parse(response))

        data = _safe_json_parse(response)
        if kind is OperationKind.JOB:
            state = JOB_STATES.get(_normalize(data.get("JobState")), OperationState.UNKNOWN)
        else:
            state = TASK_STATES.get(_normalize(data.get("TaskState")), OperationState.UNKNOWN)
            if state is OperationState.COMPLETED and data.get("TaskStatus") in ("Warning", "Critical"):
                state = OperationState.COMPLETED_WITH_ERRORS

        return OperationStatus(
            state=state,
            percent_complete=_percent(data.get("PercentComplete")),
            messages=_messages(data),
            raw=data,
        )


def _normalize(value: Any) -> str:
    # "Completed with Errors" -> "CompletedWithErrors"
    if not isinstance(value, str):
        return ""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"\s+", value.strip()))


def _percent(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _messages(data: Dict[str, Any]) -> List[str]:
    messages = []
    if data.get("Message"):
        messages.append(str(data["Message"]))
    for entry in data.get("Messages") or []:
        if isinstance(entry, dict) and entry.get("Message"):
            messages.append(entry["Message"])
        elif isinstance(entry, str):
            messages.append(entry)
    return messages


def _extended(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [m for m in data.get("Messages") or [] if isinstance(m, dict)]
