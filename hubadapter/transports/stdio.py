"""JSON-lines host channel: events on stdin, intents on stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator, Mapping
from typing import Any, TextIO

from hubadapter.core.controller import AdapterController
from hubadapter.core.errors import HubAdapterError, ReauthLimitError
from hubadapter.core.model import Device, Intent
from hubadapter.core.service import DriverService
from hubadapter.transports.base import IntentSink
from hubadapter.transports.http_poll import HttpPoller

LOGGER = logging.getLogger(__name__)


class IntentWriter:
    """Writes each intent as one compact JSON line."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def __call__(self, intent: Intent) -> None:
        self._stream.write(json.dumps(intent.to_message(), separators=(",", ":"), default=str) + "\n")
        self._stream.flush()


def parse_line(line: str | bytes) -> dict[str, Any] | None:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        message = json.loads(line)
    except ValueError as exc:
        LOGGER.debug("Dropping malformed host line: %s", exc)
        return None
    return message if isinstance(message, dict) else None


async def stdin_lines() -> AsyncIterator[bytes]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    while True:
        line = await reader.readline()
        if not line:
            return
        yield line


class AdapterRunner:
    """Feeds host lines into one adapter and runs its device transport.

    Without an explicit class id the class is matched against the device
    record of the first ``init`` message.
    """

    def __init__(
        self,
        service: DriverService,
        *,
        class_id: str | None = None,
        emit: IntentSink | None = None,
    ) -> None:
        self.service = service
        self.class_id = class_id
        self.emit = emit or IntentWriter()
        self.controller: AdapterController | None = None
        self.poller: HttpPoller | None = None

    async def run(self, lines: AsyncIterator[str | bytes]) -> None:
        iterator = aiter(lines)
        read = asyncio.ensure_future(anext(iterator))
        try:
            while True:
                waiting: set[asyncio.Future[Any]] = {read}
                if self.poller is not None and self.poller.task is not None:
                    waiting.add(self.poller.task)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if self.poller is not None and self.poller.task in done:
                    self.poller.task.result()
                if read in done:
                    try:
                        line = read.result()
                    except StopAsyncIteration:
                        LOGGER.info("Host channel closed")
                        return
                    await self.feed(line)
                    read = asyncio.ensure_future(anext(iterator))
        finally:
            if not read.done():
                read.cancel()
            await self.shutdown()

    async def feed(self, line: str | bytes) -> None:
        message = parse_line(line)
        if message is None:
            return
        is_init = message.get("type") == "init"
        if self.controller is None:
            if not is_init and self.class_id is None:
                LOGGER.debug("Waiting for init before handling %s", message.get("type"))
                return
            self.controller = self._create_controller(message)

        if is_init:
            await self._stop_poller()
        self.controller.handle(message)
        if is_init:
            await self._start_poller()

    async def shutdown(self) -> None:
        await self._stop_poller()
        if self.controller is not None:
            self.controller.stop()

    def _create_controller(self, message: Mapping[str, Any]) -> AdapterController:
        record = message.get("device")
        device = Device.from_record(record) if isinstance(record, Mapping) else None
        device_class = self.service.resolve_class(device, self.class_id)
        LOGGER.info("Running adapter for device class %s", device_class.id)
        return self.service.create_adapter(
            device_class.id,
            emit=self.emit,
            scheduler=asyncio.get_running_loop(),
        )

    async def _start_poller(self) -> None:
        controller = self.controller
        if controller is None or controller.device is None or controller.translator is None:
            return
        if controller.device_class.transport.type != "http":
            return
        self.poller = HttpPoller(controller)
        try:
            await self.poller.start()
        except ReauthLimitError:
            raise
        except HubAdapterError as exc:
            LOGGER.error("Could not start polling device %s: %s", controller.device.id, exc)
            await self._stop_poller()
            controller.report_status("offline")

    async def _stop_poller(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
            self.poller = None


async def run_stdio(service: DriverService, *, class_id: str | None = None) -> None:
    runner = AdapterRunner(service, class_id=class_id)
    await runner.run(stdin_lines())
