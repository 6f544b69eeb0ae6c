"""HTTP polling transport for devices with a request/response API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from hubadapter.core.codec import decode_json, decode_xml, get_path, render, template_context, to_number
from hubadapter.core.controller import AdapterController
from hubadapter.core.errors import (
    PayloadError,
    ReauthLimitError,
    TransportError,
    TransportRequestError,
    TransportTimeoutError,
)
from hubadapter.core.model import Command, TransportMessage, TransportSpec
from hubadapter.transports.session import SessionAuthenticator

LOGGER = logging.getLogger(__name__)


def poll_interval_s(conf: Mapping[str, Any], transport: TransportSpec) -> float:
    """Interval from conf (milliseconds); out-of-range values fall back to the default."""
    number = to_number(conf.get(transport.interval_key))
    if number is None or not transport.interval_min_ms <= number <= transport.interval_max_ms:
        number = transport.interval_default_ms
    return number / 1000


def select_entry(document: Any, transport: TransportSpec, conf: Mapping[str, Any]) -> Any:
    """Pick this device's entry out of a list document (e.g. a FRITZ!Box device list)."""
    if not transport.select_path:
        return document
    entries = get_path(document, transport.select_path)
    if entries is None:
        return None
    if not isinstance(entries, list):
        entries = [entries]
    wanted = str(conf.get(transport.select_conf or "", "")).strip()
    for entry in entries:
        if isinstance(entry, Mapping) and str(entry.get(transport.select_key or "", "")).strip() == wanted:
            return entry
    return None


class HttpPoller:
    """Polls the device on a fixed interval and sends commands as GET requests.

    A tick is skipped while the previous poll is still in flight. Request
    failures report the device offline and are retried by the next tick.
    """

    def __init__(self, controller: AdapterController, *, client: httpx.AsyncClient | None = None) -> None:
        if controller.device is None:
            raise ValueError("HttpPoller needs an initialised controller")
        self.controller = controller
        self.device = controller.device
        self.transport = controller.device_class.transport
        self._client = client
        self._owns_client = client is None
        self.authenticator: SessionAuthenticator | None = None
        self.task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._failure: BaseException | None = None
        self._failed = asyncio.Event()
        self._has_status_rule = any(rule.kind == "status" for rule in controller.device_class.inbound)
        controller.command_sink = self.send

    @property
    def base_url(self) -> str:
        return render(self.transport.base_url or "", template_context(self.device.id, self.device.conf))

    @property
    def interval_s(self) -> float:
        return poll_interval_s(self.device.conf, self.transport)

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.transport.timeout_s)
        if self.transport.auth == "fritz_session":
            self.authenticator = SessionAuthenticator(
                self._client,
                username=str(self.device.conf.get("username", "")),
                password=str(self.device.conf.get("password", "")),
            )
            await self.authenticator.login()
        if self.transport.info_path:
            await self.fetch_info()
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        tasks = [t for t in (self.task, self._inflight, *self._pending) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _run(self) -> None:
        interval = self.interval_s
        LOGGER.info("Polling %s%s every %.1fs", self.base_url, self.transport.poll_path, interval)
        while True:
            self.tick()
            try:
                await asyncio.wait_for(self._failed.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            if self._failure is not None:
                raise self._failure

    def tick(self) -> asyncio.Task[None] | None:
        if self._inflight is not None and not self._inflight.done():
            LOGGER.debug("Previous poll still in flight; skipping tick")
            return None
        self._inflight = self._track(self.poll_once())
        return self._inflight

    async def poll_once(self) -> None:
        path = self.transport.poll_path or "/"
        try:
            document = await self.request(path)
        except ReauthLimitError:
            raise
        except (TransportError, PayloadError) as exc:
            LOGGER.warning("Polling %s failed: %s", path, exc)
            self.controller.report_status("offline")
            return

        entry = select_entry(document, self.transport, self.device.conf)
        if entry is None:
            LOGGER.warning("Device %s missing from %s response", self.device.id, path)
            self.controller.report_status("offline")
            return
        self.controller.handle_event(TransportMessage(topic=path, payload=entry))
        if not self._has_status_rule:
            self.controller.report_status("online")

    async def fetch_info(self) -> None:
        path = self.transport.info_path or "/"
        try:
            document = await self.request(path)
        except ReauthLimitError:
            raise
        except (TransportError, PayloadError) as exc:
            LOGGER.warning("Fetching %s failed: %s", path, exc)
            self.controller.report_status("offline")
            return
        self.controller.handle_event(TransportMessage(topic=path, payload=document))

    def send(self, command: Command) -> None:
        self._track(self._send(command))

    async def _send(self, command: Command) -> None:
        LOGGER.info("Sending %s to device %s", command.target, self.device.id)
        try:
            await self.request(command.target, decode=False)
        except ReauthLimitError:
            raise
        except TransportError as exc:
            LOGGER.warning("Command %s failed: %s", command.target, exc)
            self.controller.report_status("offline")

    async def request(self, path: str, *, decode: bool = True) -> Any:
        if self._client is None:
            raise TransportRequestError("HTTP client is not started")
        params = self.authenticator.params() if self.authenticator else {}
        url = httpx.URL(path).copy_merge_params(params)
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Request to {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportRequestError(f"Request to {path} failed: {exc}") from exc

        if 400 <= response.status_code < 500 and self.authenticator is not None:
            LOGGER.info("Request rejected with HTTP %d; renewing session", response.status_code)
            await self.authenticator.login()
        if not response.is_success:
            raise TransportRequestError(f"HTTP {response.status_code} from {path}")
        if not decode:
            return None
        if self.transport.response_format == "xml":
            return decode_xml(response.text)
        return decode_json(response.text)

    def _track(self, coro: Any) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, ReauthLimitError):
            self._failure = exc
            self._failed.set()
        elif exc is not None:
            LOGGER.error("HTTP task failed", exc_info=exc)
