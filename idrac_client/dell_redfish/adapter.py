"""
Dell Redfish Adapter

Issues authenticated requests against the iDRAC and keeps them alive across
expired sessions, dropped connections and flaky TLS.

Every call gets one retry budget shared by all failure classes:
- 401/403 with a session: drop the session, negotiate a new one, retry
- 401/403 in direct mode: short pause, retry
- connection refused / TLS error / timeout: exponential backoff, retry
- any other transport error: renegotiate once, retry (fatal in direct mode)
"""

import json
import logging
import random
import time
from typing import Any, Dict, Optional, Tuple, Union

import requests

from idrac_client.session_manager import SessionManager, Timeout
from idrac_client.utils import _safe_json_parse
from .auth import SessionAuthenticator
from .errors import (
    AuthenticationError,
    DellRedfishError,
    RetryBudgetExhausted,
    TransientConnectionError,
    extract_extended_info,
    map_dell_error,
)
from .models import AuthMode, FailureClass, RetryContext

CONNECTION_ERRORS = (requests.ConnectionError, requests.Timeout)

Body = Union[None, str, bytes, Dict[str, Any], list]


class DellRedfishAdapter:
    """
    Authenticated request executor for one iDRAC.

    Not safe for concurrent use from several threads on the same instance.
    """

    def __init__(
        self,
        transport: SessionManager,
        authenticator: SessionAuthenticator,
        logger: logging.Logger,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        auth_retry_delay: float = 2.0,
    ):
        """
        Args:
            transport: SessionManager bound to the iDRAC
            authenticator: Session negotiator sharing the Client's SessionState
            logger: Logger instance for operation logging
            max_retries: Total attempts allowed per call, across all failure classes
            base_delay: First backoff delay after a connection failure (seconds)
            max_delay: Backoff cap (seconds)
            auth_retry_delay: Pause before retrying a 401/403 in direct mode
        """
        self.transport = transport
        self.authenticator = authenticator
        self.logger = logger
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.auth_retry_delay = auth_retry_delay

    @property
    def state(self):
        return self.authenticator.state

    def execute(
        self,
        method: str,
        path: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[Timeout] = None,
    ) -> requests.Response:
        """
        Make an authenticated request to the iDRAC.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            path: Redfish path (or absolute URL returned by the iDRAC)
            body: Serialized body, or a dict/list to send as JSON
            headers: Extra request headers
            timeout: Per-call (connect, read) timeout override

        Returns:
            requests.Response for any status other than 401/403

        Raises:
            RetryBudgetExhausted: Retry budget used up; chained to the last failure
            DellRedfishError: Unclassified transport error in direct mode
        """
        data, base_headers = self._serialize(body, headers)
        ctx = RetryContext(max_attempts=self.max_retries, base_delay=self.base_delay)

        while True:
            ctx.attempt += 1
            self._ensure_session()

            call_headers = dict(base_headers)
            call_headers.update(self.authenticator.auth_headers())

            try:
                with self.transport.timeout_override(timeout):
                    response = self.transport.request(method, path, headers=call_headers, data=data)

            except CONNECTION_ERRORS as e:
                ctx.record(FailureClass.CONNECTION)
                self.logger.warning(
                    f"Connection error on {method} {path} (attempt {ctx.attempt}/{ctx.max_attempts}): {e}"
                )
                last_error = TransientConnectionError(f"{method} {path}: {e}", error_code="CONNECTION")
                self._give_up_if_exhausted(ctx, method, path, last_error)

                backoff = self.exponential_backoff(ctx.attempt, ctx.base_delay)
                self.logger.info(f"Backing off {backoff:.1f}s before retry...")
                time.sleep(backoff)
                if not self.state.direct_mode:
                    self._recreate_session()
                continue

            except requests.RequestException as e:
                if self.state.direct_mode:
                    ctx.record(FailureClass.FATAL)
                    self.logger.error(f"Error during authenticated request (direct mode): {e}")
                    raise DellRedfishError(
                        f"Error during authenticated request: {e}", error_code="FATAL"
                    ) from e

                ctx.record(FailureClass.TRANSIENT)
                self.logger.warning(f"Error during authenticated request (token mode): {e}")
                last_error = DellRedfishError(f"{method} {path}: {e}", error_code="TRANSIENT")
                self._give_up_if_exhausted(ctx, method, path, last_error)
                self._recreate_session()
                continue

            if response.status_code in (401, 403):
                ctx.record(FailureClass.AUTH_EXPIRED)
                last_error = AuthenticationError(
                    f"{method} {path} returned {response.status_code}",
                    error_code="AUTH_EXPIRED",
                    status_code=response.status_code,
                    extended_info=extract_extended_info(_safe_json_parse(response)),
                )
                self._give_up_if_exhausted(ctx, method, path, last_error)

                if self.state.mode is AuthMode.TOKEN_AUTH:
                    self.logger.warning("Session expired or invalid, attempting to create a new session...")
                    self._recreate_session()
                else:
                    self.logger.warning(
                        f"{response.status_code} in direct mode, retrying in {self.auth_retry_delay}s"
                    )
                    time.sleep(self.auth_retry_delay)
                continue

            self.logger.debug(f"{method} {path} -> {response.status_code}")
            return response

    def request_json(
        self,
        method: str,
        path: str,
        payload: Body = None,
        timeout: Optional[Timeout] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Execute a request and return its parsed JSON body.

        The Location header, when present, is injected as ``_location_header``.

        Raises:
            DellRedfishError: On any status >= 400, carrying Dell extended info
        """
        operation_name = operation_name or f"{method} {path}"
        response = self.execute(method, path, body=payload, timeout=timeout)
        response_data = _safe_json_parse(response) if response.content else {}

        if response.status_code >= 400:
            error_info = map_dell_error(response_data)
            raise DellRedfishError(
                message=f"{operation_name} failed: {error_info['message']}",
                error_code=error_info["code"],
                status_code=response.status_code,
                extended_info=extract_extended_info(response_data),
            )

        location = response.headers.get("Location")
        if location:
            response_data["_location_header"] = location
        return response_data

    def exponential_backoff(self, attempt: int, base_delay: Optional[float] = None) -> float:
        """Calculate exponential backoff with jitter"""
        if base_delay is None:
            base_delay = self.base_delay
        base = min(base_delay * (2 ** (attempt - 1)), self.max_delay)
        jitter = random.uniform(0, 0.3 * base)
        return base + jitter

    def _ensure_session(self):
        if self.state.mode is AuthMode.TOKEN_AUTH and not (self.state.token or self.state.location):
            if not self.authenticator.create():
                self.logger.warning("No Redfish session available, sending Basic Auth for this attempt")

    def _recreate_session(self):
        self.authenticator.delete()
        if self.authenticator.create():
            self.logger.info("Created a new session, retrying request...")
        else:
            self.logger.warning("Failed to create a new session, retrying with Basic Auth...")

    def _give_up_if_exhausted(self, ctx: RetryContext, method: str, path: str, last_error: Exception):
        if not ctx.exhausted:
            return
        self.logger.error(
            f"Maximum retry count ({ctx.max_attempts}) reached for {method} {path} "
            f"(last failure: {ctx.last_failure.value})"
        )
        raise RetryBudgetExhausted(
            f"Retry budget of {ctx.max_attempts} attempts exhausted for {method} {path} "
            f"(last failure: {ctx.last_failure.value})",
            attempts=ctx.attempt,
            last_failure=ctx.last_failure,
            status_code=getattr(last_error, "status_code", None),
            extended_info=getattr(last_error, "extended_info", None),
        ) from last_error

    @staticmethod
    def _serialize(body: Body, headers: Optional[Dict[str, str]]) -> Tuple[Any, Dict[str, str]]:
        request_headers = dict(headers or {})
        if isinstance(body, (dict, list)):
            request_headers.setdefault("Content-Type", "application/json")
            return json.dumps(body), request_headers
        return body, request_headers
