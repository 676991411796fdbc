"""Queues DAP command packets between the USB/IP front end and a worker thread."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from airdap.dap import CommandId, DapConfig, ResetSignal

DEFAULT_BUFFER_COUNT = 20
RESPONSE_TIMEOUT = 0.01

log = logging.getLogger(__name__)

ProcessCommand = Callable[[bytes], bytes]


class DapHandler:
    """Buffers DAP requests, runs them through a command processor and queues replies.

    ``process_command(request)`` receives a request padded to the configured
    packet size and returns the response bytes.
    """

    def __init__(
        self,
        process_command: ProcessCommand,
        config: Optional[DapConfig] = None,
        buffer_count: Optional[int] = None,
    ) -> None:
        if buffer_count is None:
            buffer_count = DEFAULT_BUFFER_COUNT
        if buffer_count < 1:
            raise ValueError("buffer_count must be at least 1")
        self._process_command = process_command
        self.config = config if config is not None else DapConfig()
        self.buffer_count = buffer_count
        self._lock = threading.Lock()
        self._notify = threading.Semaphore(0)
        self._restart = ResetSignal.NO_SIGNAL
        self._requests: Optional[queue.Queue[bytes]] = None
        self._responses: Optional[queue.Queue[bytes]] = None
        self._responded = 0
        self._swo_data: Optional[bytes] = None
        self._allocate()

    # ------------------------------------------------------------------ buffers

    def _allocate(self) -> None:
        if self._requests is None:
            self._requests = queue.Queue(maxsize=self.buffer_count)
        if self._responses is None:
            self._responses = queue.Queue(maxsize=self.buffer_count)

    def _free(self) -> None:
        self._requests = None
        self._responses = None
        self._responded = 0

    def _apply_signal(self) -> None:
        with self._lock:
            signal = self._restart
            if signal == ResetSignal.NO_SIGNAL:
                return
            self._free()
            if signal == ResetSignal.RESET_HANDLE:
                self._allocate()
            self._restart = ResetSignal.NO_SIGNAL

    def signal(self, signal) -> None:
        """Ask the worker to rebuild (RESET_HANDLE) or drop (DELETE_HANDLE) its buffers."""
        self._restart = ResetSignal(signal)
        self._notify.release()

    # ------------------------------------------------------------------ requests

    def submit(self, request) -> None:
        """Queue one request packet from the host, blocking while the buffer is full."""
        with self._lock:
            requests = self._requests
        if requests is None:
            raise RuntimeError("DAP buffers are released")
        size = self.config.packet_size()
        packet = bytes(request[:size]).ljust(size, b"\x00")
        requests.put(packet)
        self._notify.release()

    def _process_one(self, timeout: float) -> bool:
        with self._lock:
            requests, responses = self._requests, self._responses
        if requests is None or responses is None:
            return False
        try:
            if timeout > 0:
                packet = requests.get(timeout=timeout)
            else:
                packet = requests.get_nowait()
        except queue.Empty:
            return False

        if packet[0] == CommandId.QUEUE_COMMANDS:
            packet = bytes([CommandId.EXECUTE_COMMANDS]) + packet[1:]

        size = self.config.packet_size()
        response = bytes(self._process_command(packet))[:size]
        if not self.config.use_winusb:
            response = response.ljust(size, b"\x00")
        responses.put(response)
        with self._lock:
            self._responded += 1
        return True

    def process_pending(self) -> int:
        """Process every queued request now; returns how many were processed."""
        self._apply_signal()
        count = 0
        while self._process_one(0):
            self._notify.acquire(blocking=False)
            count += 1
        return count

    def run(self, stop_event: threading.Event) -> None:
        """Worker loop: process one request per notification until ``stop_event`` is set."""
        while not stop_event.is_set():
            self._apply_signal()
            if not self._notify.acquire(timeout=0.05):
                continue
            self._process_one(0.001)

    # ------------------------------------------------------------------ responses

    def pending_responses(self) -> int:
        """Number of responses waiting to be collected."""
        with self._lock:
            return self._responded

    def take_response(self, timeout=RESPONSE_TIMEOUT) -> Optional[bytes]:
        """Return the oldest response, or None when none is ready."""
        with self._lock:
            responses = self._responses
            pending = self._responded
        if responses is None or pending <= 0:
            return None
        try:
            response = responses.get(timeout=timeout) if timeout > 0 else responses.get_nowait()
        except queue.Empty:
            return None
        with self._lock:
            self._responded -= 1
        return response

    def discard_response(self, timeout=RESPONSE_TIMEOUT) -> bool:
        """Drop one lagging response after the host unlinked a transfer."""
        return self.take_response(timeout) is not None

    # ------------------------------------------------------------------ SWO trace

    def queue_swo_transfer(self, data) -> None:
        """Hand over a block of SWO trace data for the next trace IN transfer."""
        with self._lock:
            self._swo_data = bytes(data)

    def take_swo_data(self) -> Optional[bytes]:
        """Return queued SWO trace data and mark the transfer complete."""
        with self._lock:
            data, self._swo_data = self._swo_data, None
        return data