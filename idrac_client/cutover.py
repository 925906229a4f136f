"""
Address cutover monitoring for iDRAC management IP changes.

After an import that changes the iDRAC's own address, two probe loops run side
by side: one watches the old address until it stops answering, the other
waits for the new address to come up once the old one is gone. The first
confirmed success on the new address ends both loops and switches the client
over exactly once.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from idrac_client.dell_redfish.errors import OperationTimeout


class AddressCutoverMonitor:
    """Watches an iDRAC move from one management address to another"""

    def __init__(
        self,
        probe: Callable[[str], bool],
        switch_host: Callable[[str], None],
        logger: logging.Logger,
        timeout: float = 300.0,
        probe_interval: float = 5.0,
    ):
        """
        Args:
            probe: Short-timeout reachability check, True when the address answers
            switch_host: Called once with the new address on success
            logger: Logger instance for operation logging
            timeout: Overall time budget (seconds)
            probe_interval: Seconds between probes of the same address
        """
        self.probe = probe
        self.switch_host = switch_host
        self.logger = logger
        self.timeout = timeout
        self.probe_interval = probe_interval

    @property
    def max_rounds(self) -> int:
        if self.probe_interval <= 0:
            return 1
        return max(1, int(self.timeout / self.probe_interval))

    def watch(self, old_host: str, new_host: str) -> str:
        """
        Block until the iDRAC answers on ``new_host`` and no longer on ``old_host``.

        Returns:
            str: The new host, already applied through ``switch_host``

        Raises:
            OperationTimeout: The cutover was not confirmed within the time budget
        """
        if old_host == new_host:
            self.logger.info(f"iDRAC address unchanged ({new_host}), nothing to monitor")
            return new_host

        self.logger.info(f"Monitoring iDRAC address change {old_host} -> {new_host}")
        old_down = threading.Event()
        stop = threading.Event()

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="idrac-cutover") as executor:
            old_future = executor.submit(self._watch_old, old_host, old_down, stop)
            new_future = executor.submit(self._watch_new, new_host, old_down, stop)
            try:
                reached = new_future.result()
            finally:
                # Ends the old loop; an in-flight probe result is discarded
                stop.set()

        old_error = old_future.exception()
        if old_error is not None:
            self.logger.warning(f"Probe of old address {old_host} failed: {old_error!r}")

        if not reached:
            self.logger.error(f"iDRAC did not come up on {new_host} within {self.timeout}s")
            raise OperationTimeout(
                f"IP change to {new_host} not confirmed within {self.timeout} seconds",
                attempts=self.max_rounds,
            )

        self.switch_host(new_host)
        self.logger.info(f"iDRAC is now reachable at {new_host}")
        return new_host

    def _watch_old(self, host: str, old_down: threading.Event, stop: threading.Event):
        for _ in range(self.max_rounds):
            if stop.is_set():
                return
            if not self.probe(host):
                self.logger.info(f"Old address {host} stopped responding")
                old_down.set()
                return
            stop.wait(self.probe_interval)

    def _watch_new(self, host: str, old_down: threading.Event, stop: threading.Event) -> bool:
        for round_number in range(1, self.max_rounds + 1):
            if stop.is_set():
                return False
            if not old_down.is_set():
                old_down.wait(self.probe_interval)
                continue
            if self.probe(host):
                return True
            self.logger.debug(f"New address {host} not reachable yet (round {round_number}/{self.max_rounds})")
            stop.wait(self.probe_interval)
        return False
