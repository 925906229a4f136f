"""
iDRAC Redfish Client

One Client per iDRAC. It owns the transport, the session state and the
layers built on them:

    client = Client("10.0.0.5", "root", "calvin")
    with client:
        response = client.authenticated_request("GET", "/redfish/v1/Systems/System.Embedded.1")
        profile = client.export_profile(target="IDRAC")

or

    with Client.connect("10.0.0.5", "root", "calvin") as client:
        ...
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Optional

import requests

from idrac_client.config import Settings, settings as default_settings
from idrac_client.cutover import AddressCutoverMonitor
from idrac_client.dell_redfish import endpoints
from idrac_client.dell_redfish.adapter import DellRedfishAdapter
from idrac_client.dell_redfish.auth import SessionAuthenticator
from idrac_client.dell_redfish.errors import AuthenticationError, DellRedfishError, SessionLimitExceeded
from idrac_client.dell_redfish.helpers import OperationTracker
from idrac_client.dell_redfish.models import AuthMode, ConfigComponent, ConfigProfile, SessionState
from idrac_client.dell_redfish.scp import ScpCodec
from idrac_client.session_manager import SessionManager, Timeout
from idrac_client.utils import _safe_json_parse

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def get_logger(name: str = "idrac_client", level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """Configure (once) and return the logger used by every client layer."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt=fmt or default_settings.log_format or DEFAULT_LOG_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel((level or default_settings.log_level).upper())
    return logger


def _pick(value, default):
    return default if value is None else value


class Client:
    """
    Redfish client for a single Dell iDRAC.

    Not thread-safe: callers sharing one Client between threads must
    serialize access themselves.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: Optional[int] = None,
        use_ssl: Optional[bool] = None,
        verify_ssl: Optional[bool] = None,
        legacy_tls: Optional[bool] = None,
        direct_mode: bool = False,
        auto_delete_sessions: Optional[bool] = None,
        max_retries: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
        config: Optional[Settings] = None,
    ):
        """
        Args:
            host: iDRAC IP address or hostname
            username: iDRAC username
            password: iDRAC password
            port: HTTPS port (default from settings, 443)
            use_ssl: Use https:// (default True)
            verify_ssl: Verify the iDRAC certificate (default False)
            legacy_tls: Allow TLSv1.0/1.1 for iDRAC 7/8 firmware
            direct_mode: Skip Redfish sessions and send Basic Auth on every request
            auto_delete_sessions: Evict stale sessions when the session quota is hit
            max_retries: Attempts per authenticated request
            logger: Logger to use (default: the "idrac_client" logger)
            config: Settings instance (default: environment-driven settings)
        """
        self.config = config or default_settings
        self.username = username
        self.logger = logger or get_logger(level=self.config.log_level, fmt=self.config.log_format)

        self.transport = SessionManager(
            host=host,
            port=_pick(port, self.config.port),
            use_ssl=_pick(use_ssl, self.config.use_ssl),
            verify_ssl=_pick(verify_ssl, self.config.verify_ssl),
            legacy_ssl=_pick(legacy_tls, self.config.legacy_tls),
            timeout=(self.config.connect_timeout, self.config.read_timeout),
        )
        self.state = SessionState(mode=AuthMode.BASIC_AUTH_DIRECT if direct_mode else AuthMode.TOKEN_AUTH)

        self.authenticator = SessionAuthenticator(
            transport=self.transport,
            state=self.state,
            username=username,
            password=password,
            logger=self.logger,
            auto_delete_sessions=_pick(auto_delete_sessions, self.config.auto_delete_sessions),
            delete_delay=self.config.session_delete_delay,
            settle_delay=self.config.session_settle_delay,
        )
        self.adapter = DellRedfishAdapter(
            transport=self.transport,
            authenticator=self.authenticator,
            logger=self.logger,
            max_retries=_pick(max_retries, self.config.max_retries),
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            auth_retry_delay=self.config.auth_retry_delay,
        )
        self.tracker = OperationTracker(self.adapter, self.logger)
        self.scp = ScpCodec(
            self.adapter,
            self.tracker,
            self.logger,
            task_max_polls=self.config.task_max_polls,
            task_poll_interval=self.config.task_poll_interval,
        )

    @property
    def host(self) -> str:
        return self.transport.host

    @property
    def base_url(self) -> str:
        return self.transport.base_url

    @property
    def direct_mode(self) -> bool:
        return self.state.direct_mode

    # Session lifecycle

    def login(self, require_session: bool = False) -> bool:
        """
        Open a Redfish session.

        Args:
            require_session: Raise instead of falling back to Basic Auth

        Returns:
            True when a session is active, False when running in direct mode

        Raises:
            SessionLimitExceeded: require_session and the session quota was the blocker
            AuthenticationError: require_session and no strategy produced a session
        """
        if self.state.direct_mode:
            self.logger.info(f"Using direct mode (Basic Auth) for {self.host}")
            return False

        if self.state.token or self.state.location:
            return True

        if self.authenticator.create():
            return True

        if require_session:
            if self.state.sessions_maxed:
                raise SessionLimitExceeded(f"Maximum number of user sessions reached on {self.host}")
            raise AuthenticationError(f"Failed to create a Redfish session on {self.host}", error_code="AUTH001")

        self.logger.warning(f"No Redfish session on {self.host}, requests use Basic Auth")
        return False

    def logout(self) -> bool:
        """Delete the current session. Never raises."""
        return self.authenticator.delete()

    def close(self):
        """Logout and release pooled connections."""
        try:
            self.logout()
        finally:
            self.transport.close()

    def __enter__(self) -> "Client":
        self.login()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @classmethod
    @contextmanager
    def connect(cls, *args, **kwargs):
        """Login, yield the client, and always logout afterwards."""
        client = cls(*args, **kwargs)
        client.login()
        try:
            yield client
        finally:
            client.close()

    # Core entry points

    def authenticated_request(
        self,
        method: str,
        path: str,
        body=None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[Timeout] = None,
    ) -> requests.Response:
        return self.adapter.execute(method, path, body=body, headers=headers, timeout=timeout)

    def get_json(self, path: str, timeout: Optional[Timeout] = None) -> Dict[str, Any]:
        return self.adapter.request_json("GET", path, timeout=timeout)

    def wait_for_job(self, job, max_attempts: Optional[int] = None, poll_interval: Optional[float] = None):
        return self.tracker.wait_for_job(
            job,
            max_attempts=max_attempts or self.config.job_max_polls,
            poll_interval=_pick(poll_interval, self.config.job_poll_interval),
        )

    def wait_for_task(self, task, max_attempts: Optional[int] = None, poll_interval: Optional[float] = None):
        return self.tracker.wait_for_task(
            task,
            max_attempts=max_attempts or self.config.task_max_polls,
            poll_interval=_pick(poll_interval, self.config.task_poll_interval),
        )

    def export_profile(self, target: str = "ALL", export_format: str = "JSON") -> ConfigProfile:
        return self.scp.export(target=target, export_format=export_format)

    def make_component(self, fqdd: str, attributes=None, components=None) -> ConfigComponent:
        return self.scp.make(fqdd, attributes=attributes, components=components)

    def import_profile(self, profile, target: str = "ALL", reboot: bool = False, shutdown_type: str = "Forced"):
        return self.scp.import_profile(profile, target=target, reboot=reboot, shutdown_type=shutdown_type)

    # Discovery

    def redfish_version(self) -> Optional[str]:
        response = self.authenticated_request("GET", endpoints.SERVICE_ROOT)
        if response.status_code != 200:
            self.logger.warning(f"Failed to read service root: {response.status_code}")
            return None
        return _safe_json_parse(response).get("RedfishVersion")

    def idrac_generation(self) -> int:
        """
        iDRAC generation (7, 8 or 9).

        Detected from the Server header, then RedfishVersion, then the
        manager FirmwareVersion major (3.x and later is iDRAC 9).
        """
        response = self.authenticated_request("GET", endpoints.SERVICE_ROOT)
        if response.status_code != 200:
            raise DellRedfishError(
                f"Failed to get iDRAC information. Status code: {response.status_code}",
                status_code=response.status_code,
            )

        server = (response.headers.get("Server") or "").lower()
        if "appweb/4.5.4" in server or "idrac/8" in server:
            return 8
        if "apache" in server or "idrac/9" in server:
            return 9

        redfish = _safe_json_parse(response).get("RedfishVersion")
        if redfish == "1.4.0":
            return 8
        if redfish == "1.18.0":
            return 9

        manager = self.get_json(endpoints.MANAGER)
        match = re.match(r"(\d+)", str(manager.get("FirmwareVersion") or ""))
        if not match:
            raise DellRedfishError(f"Unknown iDRAC version: {server or 'no Server header'} / {redfish}")

        major = int(match.group(1))
        if major >= 3:
            return 9
        if major == 2:
            return 8
        return 7

    # Address changes

    def switch_host(self, new_host: str):
        """Point this client at a new iDRAC address."""
        self.logger.info(f"Switching iDRAC address {self.host} -> {new_host}")
        self.transport.set_host(new_host)

    def monitor_cutover(self, new_host: str, timeout: Optional[float] = None) -> str:
        """Wait for the iDRAC to move to ``new_host`` and switch over."""
        monitor = AddressCutoverMonitor(
            probe=self.transport.probe,
            switch_host=self.switch_host,
            logger=self.logger,
            timeout=_pick(timeout, self.config.cutover_timeout),
            probe_interval=self.config.cutover_probe_interval,
        )
        return monitor.watch(self.host, new_host)
