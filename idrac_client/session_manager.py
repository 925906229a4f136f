"""
Session Manager - HTTP transport for one iDRAC

Provides:
- A lazily created requests.Session bound to one host:port
- Legacy TLS adapter support for iDRAC 7/8
- Scoped per-call timeout overrides
- Request serialization (one in-flight request per client)
- Short-timeout reachability probes for address cutover

Does NOT provide (handled by the Redfish layer):
- Authentication
- Retries
"""

import threading
from contextlib import contextmanager
from typing import Dict, Optional, Tuple, Union

import requests
import urllib3

from idrac_client.legacy_ssl_adapter import LegacySSLAdapter

Timeout = Union[float, Tuple[float, float]]


class SessionManager:
    """
    Owns the connection settings and the requests.Session for a single iDRAC.

    Stateless beyond connection settings: auth headers are supplied per call.
    """

    def __init__(
        self,
        host: str,
        port: int = 443,
        use_ssl: bool = True,
        verify_ssl: bool = False,
        legacy_ssl: bool = False,
        timeout: Timeout = (5, 30),
    ):
        """
        Args:
            host: iDRAC IP address or hostname
            port: HTTPS (or HTTP) port
            use_ssl: Use https:// (default True)
            verify_ssl: Verify the iDRAC certificate (default False for self-signed)
            legacy_ssl: Mount the legacy TLS adapter for iDRAC 7/8
            timeout: Default (connect, read) timeout
        """
        self.host = host
        self.port = port
        self.use_ssl = use_ssl
        self.verify_ssl = verify_ssl
        self.legacy_ssl = legacy_ssl
        self.timeout = timeout
        self._session: Optional[requests.Session] = None
        self._lock = threading.Lock()

        if not verify_ssl:
            urllib3.disable_warnings()

    @property
    def base_url(self) -> str:
        return self.url_for(self.host)

    def url_for(self, host: str) -> str:
        protocol = "https" if self.use_ssl else "http"
        return f"{protocol}://{host}:{self.port}"

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            session = requests.Session()
            session.verify = self.verify_ssl
            if self.legacy_ssl:
                session.mount("https://", LegacySSLAdapter(verify_ssl=self.verify_ssl))
            self._session = session
        return self._session

    def request(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        data=None,
        timeout: Optional[Timeout] = None,
    ) -> requests.Response:
        """
        Issue one HTTP request against the current host.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            path: Path relative to the base URL, or an absolute URL
            headers: Request headers (auth included by the caller)
            data: Already serialized body
            timeout: Overrides the current default for this call only

        Returns:
            requests.Response object (any status code)

        Raises:
            requests.RequestException: On connection-level failures
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        request_headers = {"Accept": "application/json"}
        request_headers.update(headers or {})

        with self._lock:
            return self.session.request(
                method.upper(),
                url,
                headers=request_headers,
                data=data,
                timeout=timeout if timeout is not None else self.timeout,
            )

    @contextmanager
    def timeout_override(self, timeout: Optional[Timeout]):
        """Temporarily replace the default timeout; restored on every exit path."""
        previous = self.timeout
        if timeout is not None:
            self.timeout = timeout
        try:
            yield self
        finally:
            self.timeout = previous

    def set_host(self, host: str):
        """Point the transport at a new address (after an iDRAC IP change)."""
        if host == self.host:
            return
        self.host = host
        # Pooled connections belong to the old address
        self.close()

    def probe(
        self,
        host: str,
        path: str = "/redfish/v1",
        headers: Optional[Dict[str, str]] = None,
        timeout: Timeout = (2, 3),
    ) -> bool:
        """
        Lightweight reachability check of ``host`` with a very short timeout.

        Uses a one-off request so it can run from a probe thread without
        touching the shared session.
        """
        try:
            response = requests.get(
                f"{self.url_for(host)}{path}",
                headers=headers or {},
                verify=self.verify_ssl,
                timeout=timeout,
            )
            return response.status_code == 200
        except requests.RequestException:
            return False

    def close(self):
        """Close the underlying requests.Session."""
        if self._session is not None:
            try:
                self._session.close()
            finally:
                self._session = None
