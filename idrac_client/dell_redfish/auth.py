"""
Redfish Session Negotiation

Creates and deletes Redfish sessions on the iDRAC. Login is an ordered list
of independent strategies tried until one yields a session; when the iDRAC
reports its session quota is used up, stale sessions are evicted once and the
strategy is retried. If every strategy is rejected the client drops to Basic
Auth on every request for the rest of its life. A transport failure only ends
the current attempt; the next call negotiates again.
"""

import json
import logging
import re
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from idrac_client.session_manager import SessionManager
from idrac_client.utils import basic_auth_value, redfish_path
from . import endpoints
from .errors import SESSION_LIMIT_MARKER
from .models import AuthMode, SessionState


class SessionOutcome(Enum):
    CREATED = "created"
    QUOTA_EXCEEDED = "quota_exceeded"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"


class SessionAuthenticator:
    """
    Session lifecycle for one Client.

    Mutates only the SessionState it is given; the Client owns that state.
    """

    def __init__(
        self,
        transport: SessionManager,
        state: SessionState,
        username: str,
        password: str,
        logger: logging.Logger,
        auto_delete_sessions: bool = True,
        delete_delay: float = 1.0,
        settle_delay: float = 3.0,
    ):
        """
        Args:
            transport: SessionManager bound to the iDRAC
            state: Session state owned by the Client
            username: iDRAC username
            password: iDRAC password
            logger: Logger instance for operation logging
            auto_delete_sessions: Evict existing sessions when the quota is reached
            delete_delay: Seconds between individual session deletions
            settle_delay: Seconds to wait after eviction before logging in again
        """
        self.transport = transport
        self.state = state
        self.username = username
        self.password = password
        self.logger = logger
        self.auto_delete_sessions = auto_delete_sessions
        self.delete_delay = delete_delay
        self.settle_delay = settle_delay
        self._collection: Optional[str] = None

        self.strategies: List[Tuple[str, Callable[[str], requests.Response]]] = [
            ("JSON", self._create_with_content_type),
            ("Basic Auth JSON", self._create_with_basic_auth),
            ("Basic Auth form-urlencoded", self._create_with_form_basic_auth),
            ("form-urlencoded", self._create_with_form),
        ]

    # Headers

    def basic_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": basic_auth_value(self.username, self.password)}

    def auth_headers(self) -> Dict[str, str]:
        """Headers for the current mode (token when one is held, Basic Auth otherwise)."""
        if self.state.mode is AuthMode.TOKEN_AUTH and self.state.token:
            return {"X-Auth-Token": self.state.token}
        return self.basic_auth_headers()

    def current_mode(self) -> AuthMode:
        return self.state.mode

    # Discovery

    def session_collection(self) -> str:
        """
        Session collection path for this iDRAC, chosen from the service root's
        RedfishVersion. Cached only once a RedfishVersion has been read; until
        then the SessionService path is assumed and the next call probes again.
        """
        if self._collection:
            return self._collection

        version = None
        try:
            response = self.transport.request("GET", endpoints.SERVICE_ROOT)
            if response.status_code == 200:
                version = response.json().get("RedfishVersion")
            else:
                self.logger.debug(f"Service root probe returned {response.status_code}")
        except (requests.RequestException, ValueError, AttributeError) as e:
            self.logger.debug(f"Service root probe failed: {e}")

        if version:
            self._collection = endpoints.session_collection_for(version)
            self.logger.debug(f"RedfishVersion {version} -> sessions at {self._collection}")
            return self._collection
        return endpoints.SESSION_SERVICE_SESSIONS

    # Lifecycle

    def create(self) -> bool:
        """
        Create a Redfish session.

        Returns:
            True when a token and/or session location was obtained. False when
            the iDRAC could not be reached (mode unchanged) or every strategy
            was rejected (the client is then in direct mode for good).
        """
        if self.state.direct_mode:
            self.logger.debug("Skipping Redfish session creation (direct mode)")
            return False

        url = self.session_collection()
        evicted = False

        for name, strategy in self.strategies:
            outcome = self._attempt(name, strategy, url)

            if outcome is SessionOutcome.QUOTA_EXCEEDED and not evicted:
                evicted = True
                outcome = self._evict_and_retry(name, strategy, url)

            if outcome is SessionOutcome.CREATED:
                return True

            if outcome is SessionOutcome.UNREACHABLE:
                self.logger.warning("iDRAC unreachable during Redfish session creation, keeping current auth mode")
                return False

        self.logger.warning("All Redfish session strategies failed, switching to direct mode (Basic Auth)")
        self.state.clear()
        self.state.mode = AuthMode.BASIC_AUTH_DIRECT
        return False

    def delete(self) -> bool:
        """
        Delete the current Redfish session (logout). Best effort, never raises.

        Returns:
            True if the iDRAC confirmed the deletion
        """
        if not self.state.token and not self.state.location:
            return False

        deleted = False
        try:
            if self.state.token and self.state.location:
                deleted = self._delete_with_token()

            if not deleted:
                deleted = self._delete_by_session_id()
        except Exception as e:
            self.logger.warning(f"Error during Redfish session deletion: {e}")
        finally:
            self.state.clear()

        if deleted:
            self.logger.info("Redfish session deleted")
        return deleted

    def clear_all_sessions(self) -> bool:
        """
        Delete every active session on the iDRAC using Basic Auth.

        Returns:
            True if all listed sessions were deleted
        """
        url = self.session_collection()
        self.logger.info("Clearing active Redfish sessions with Basic Auth...")

        try:
            response = self.transport.request("GET", url, headers=self.basic_auth_headers())
        except requests.RequestException as e:
            self.logger.error(f"Failed to list sessions: {e}")
            return False

        if response.status_code != 200:
            self.logger.error(f"Failed to list sessions: {response.status_code} - {response.text}")
            return False

        try:
            members = response.json().get("Members") or []
        except ValueError as e:
            self.logger.error(f"Error parsing sessions response: {e}")
            return False

        if not members:
            self.logger.info("No active sessions found")
            return True

        self.logger.info(f"Found {len(members)} active sessions")
        success = True
        for index, member in enumerate(members):
            session_uri = member.get("@odata.id") if isinstance(member, dict) else None
            if not session_uri:
                continue

            if index > 0:
                time.sleep(self.delete_delay)

            try:
                delete_response = self.transport.request(
                    "DELETE", redfish_path(session_uri), headers=self.basic_auth_headers()
                )
            except requests.RequestException as e:
                self.logger.warning(f"Failed to delete session {session_uri}: {e}")
                success = False
                continue

            if delete_response.status_code in (200, 204):
                self.logger.debug(f"Deleted session {session_uri}")
            else:
                self.logger.warning(f"Failed to delete session {session_uri}: {delete_response.status_code}")
                success = False

        return success

    # Strategies (each posts credentials one way and returns the raw response)

    def _payload(self) -> Dict[str, str]:
        return {"UserName": self.username, "Password": self.password}

    def _create_with_content_type(self, url: str) -> requests.Response:
        return self.transport.request(
            "POST", url,
            headers={"Content-Type": "application/json"},
            data=json.dumps(self._payload()),
        )

    def _create_with_basic_auth(self, url: str) -> requests.Response:
        headers = self.basic_auth_headers()
        headers["Content-Type"] = "application/json"
        return self.transport.request("POST", url, headers=headers, data=json.dumps(self._payload()))

    def _create_with_form_basic_auth(self, url: str) -> requests.Response:
        headers = self.basic_auth_headers()
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        return self.transport.request("POST", url, headers=headers, data=urlencode(self._payload()))

    def _create_with_form(self, url: str) -> requests.Response:
        return self.transport.request(
            "POST", url,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data=urlencode(self._payload()),
        )

    # Internals

    def _attempt(self, name: str, strategy: Callable[[str], requests.Response], url: str) -> SessionOutcome:
        try:
            response = strategy(url)
        except requests.RequestException as e:
            self.logger.debug(f"Session creation ({name}) failed: {e}")
            return SessionOutcome.UNREACHABLE

        outcome = self._process_session_response(response)
        if outcome is SessionOutcome.CREATED:
            self.logger.info(f"Redfish session created ({name})")
        elif outcome is SessionOutcome.QUOTA_EXCEEDED:
            self.logger.warning(f"Maximum sessions reached during Redfish session creation ({name})")
        elif outcome is SessionOutcome.REJECTED:
            self.logger.debug(f"Session creation ({name}) rejected: {response.status_code}")
        return outcome

    def _process_session_response(self, response: requests.Response) -> SessionOutcome:
        if response.status_code in (200, 201):
            token = response.headers.get("X-Auth-Token")
            location = response.headers.get("Location")
            if token or location:
                self.state.token = token
                self.state.location = redfish_path(location) if location else None
                self.state.mode = AuthMode.TOKEN_AUTH
                self.state.sessions_maxed = False
                return SessionOutcome.CREATED
            return SessionOutcome.REJECTED

        if response.status_code == 400 and SESSION_LIMIT_MARKER in (response.text or "").lower():
            self.state.sessions_maxed = True
            return SessionOutcome.QUOTA_EXCEEDED

        return SessionOutcome.REJECTED

    def _evict_and_retry(
        self, name: str, strategy: Callable[[str], requests.Response], url: str
    ) -> SessionOutcome:
        if not self.auto_delete_sessions:
            self.logger.warning("Session quota reached and auto-delete is disabled")
            return SessionOutcome.QUOTA_EXCEEDED

        if not self.clear_all_sessions():
            self.logger.warning("Failed to clear sessions")
            return SessionOutcome.QUOTA_EXCEEDED

        time.sleep(self.settle_delay)
        self.logger.info(f"Retrying Redfish session creation after clearing sessions ({name})")
        return self._attempt(name, strategy, url)

    def _delete_with_token(self) -> bool:
        try:
            response = self.transport.request(
                "DELETE", self.state.location, headers={"X-Auth-Token": self.state.token}
            )
        except requests.RequestException as e:
            self.logger.debug(f"Token session delete failed: {e}")
            return False
        if response.status_code in (200, 204):
            return True
        self.logger.debug(f"Token session delete returned {response.status_code}")
        return False

    def _delete_by_session_id(self) -> bool:
        session_id = self._session_id()
        if not session_id:
            return False
        response = self.transport.request(
            "DELETE", f"{self.session_collection()}/{session_id}", headers=self.basic_auth_headers()
        )
        return response.status_code in (200, 204)

    def _session_id(self) -> Optional[str]:
        match = re.search(r"(\d+)/?$", self.state.location or "")
        return match.group(1) if match else None
