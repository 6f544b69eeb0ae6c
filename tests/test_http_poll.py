from __future__ import annotations

import asyncio

import httpx
import pytest
from helpers import FakeScheduler, Recorder, feature, init_message, redis

from hubadapter.core.errors import ReauthLimitError
from hubadapter.core.model import SetData
from hubadapter.core.service import DriverService
from hubadapter.transports.http_poll import HttpPoller, poll_interval_s, select_entry
from hubadapter.transports.session import INVALID_SID, SessionAuthenticator, challenge_response

MYSTROM_FEATURES = [
    feature("sw", "Switch", "action", "switch", "boolean"),
    feature("pw", "Power", "sensor", "power"),
    feature("tp", "Temperature", "sensor", "temperature"),
]
PLUG_FEATURES = [
    feature("tp", "Temperature", "sensor", "temperature"),
    feature("v", "Voltage", "sensor", "voltage"),
    feature("pw", "Power", "sensor", "power"),
    feature("sw", "Switch", "action", "switch", "boolean"),
]
DEVICE_LIST = """<devicelist version="1">
<device identifier="08761 0000111" id="16"><present>1</present></device>
<device identifier="08761 0000434" id="17">
  <present>1</present>
  <switch><state>0</state></switch>
  <powermeter><voltage>229500</voltage><power>0</power></powermeter>
  <temperature><celsius>205</celsius></temperature>
</device>
</devicelist>"""


def _controller(classes, class_id: str, conf: dict, features: list, recorder: Recorder):
    controller = DriverService(classes=classes).create_adapter(class_id, emit=recorder, scheduler=FakeScheduler())
    controller.handle(init_message("dev1", conf=conf, features=features))
    return controller


async def _drain(poller: HttpPoller) -> None:
    while poller._pending:
        await asyncio.gather(*list(poller._pending), return_exceptions=True)


def _mystrom_handler(requests: list[str], report: dict):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.raw_path.decode())
        if request.url.path == "/report":
            return httpx.Response(200, json=report)
        if request.url.path == "/info":
            return httpx.Response(200, json={"mac": "AABBCCDDEEFF", "version": "3.82.60", "type": 107})
        if request.url.path == "/relay":
            return httpx.Response(200)
        return httpx.Response(404)

    return handler


def test_poll_interval_falls_back_when_out_of_range(classes) -> None:
    transport = classes["mystrom_switch"].transport
    assert poll_interval_s({"requestInterval": 5000}, transport) == 5
    assert poll_interval_s({"requestInterval": 500}, transport) == 30
    assert poll_interval_s({"requestInterval": "soon"}, transport) == 30
    assert poll_interval_s({}, classes["fritz_plug"].transport) == 60


def test_select_entry_matches_configured_identifier(classes) -> None:
    transport = classes["fritz_plug"].transport
    document = {"devicelist": {"device": [{"identifier": "1"}, {"identifier": "2", "present": "0"}]}}
    assert select_entry(document, transport, {"identifier": "2"}) == {"identifier": "2", "present": "0"}
    assert select_entry(document, transport, {"identifier": "3"}) is None
    assert select_entry({"devicelist": {"device": {"identifier": "1"}}}, transport, {"identifier": "1"})


@pytest.mark.asyncio
async def test_poll_reports_values_and_online(classes, recorder) -> None:
    requests: list[str] = []
    report = {"relay": True, "Ws": 12.5, "temperature": 22.0}
    conf = {"ip": "10.0.0.5", "requestInterval": 30000}
    controller = _controller(classes, "mystrom_switch", conf, MYSTROM_FEATURES, recorder)
    transport = httpx.MockTransport(_mystrom_handler(requests, report))
    client = httpx.AsyncClient(transport=transport, base_url="http://10.0.0.5")
    poller = HttpPoller(controller, client=client)

    await poller.fetch_info()
    await poller.poll_once()
    await _drain(poller)

    assert recorder.edits[0].update == {"mac": "AABBCCDDEEFF", "firmwareVersion": "3.82.60", "deviceModel": 107}
    assert recorder.set_data == [
        SetData(feature={"pw": 12.5, "tp": 22}, store=True),
        SetData(feature={"sw": True}),
        SetData(status="online"),
    ]
    # the first online report re-asserts the cached switch state
    assert requests == ["/info", "/report", "/relay?state=1"]
    await client.aclose()


@pytest.mark.asyncio
async def test_state_update_is_sent_as_request(classes, recorder) -> None:
    requests: list[str] = []
    controller = _controller(classes, "mystrom_switch", {"ip": "10.0.0.5"}, MYSTROM_FEATURES, recorder)
    transport = httpx.MockTransport(_mystrom_handler(requests, {}))
    client = httpx.AsyncClient(transport=transport, base_url="http://10.0.0.5")
    poller = HttpPoller(controller, client=client)

    controller.handle(redis(sw=False))
    await _drain(poller)

    assert requests == ["/relay?state=0"]
    await client.aclose()


@pytest.mark.asyncio
async def test_failed_poll_reports_offline(classes, recorder) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/report":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(500)

    controller = _controller(classes, "mystrom_switch", {"ip": "10.0.0.5"}, MYSTROM_FEATURES, recorder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://10.0.0.5")
    poller = HttpPoller(controller, client=client)

    await poller.poll_once()
    await poller.fetch_info()

    assert recorder.statuses() == ["offline", "offline"]
    await client.aclose()


@pytest.mark.asyncio
async def test_tick_is_skipped_while_poll_in_flight(classes, recorder) -> None:
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(200, json={"relay": False})

    controller = _controller(classes, "mystrom_switch", {"ip": "10.0.0.5"}, MYSTROM_FEATURES, recorder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://10.0.0.5")
    poller = HttpPoller(controller, client=client)

    first = poller.tick()
    await asyncio.sleep(0)
    assert poller.tick() is None

    release.set()
    await first
    assert poller.tick() is not None
    await _drain(poller)
    await client.aclose()


@pytest.mark.asyncio
async def test_session_login_and_device_selection(classes, recorder) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        params = request.url.params
        if request.url.path == "/login_sid.lua":
            if params.get("response") == challenge_response("4711abcd", "secret"):
                return httpx.Response(200, text="<SessionInfo><SID>1a2b3c4d5e6f7a8b</SID></SessionInfo>")
            return httpx.Response(
                200, text=f"<SessionInfo><SID>{INVALID_SID}</SID><Challenge>4711abcd</Challenge></SessionInfo>"
            )
        if params.get("sid") != "1a2b3c4d5e6f7a8b":
            return httpx.Response(403)
        return httpx.Response(200, text=DEVICE_LIST)

    conf = {"url": "http://fritz.box", "identifier": "08761 0000434", "username": "home", "password": "secret"}
    controller = _controller(classes, "fritz_plug", conf, PLUG_FEATURES, recorder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://fritz.box")
    poller = HttpPoller(controller, client=client)

    await poller.start()
    await poller.poll_once()
    await poller.stop()

    polls = [r for r in seen if r.url.params.get("switchcmd") == "getdevicelistinfos"]
    assert polls and all(r.url.params["sid"] == "1a2b3c4d5e6f7a8b" for r in polls)
    assert recorder.set_data[0] == SetData(feature={"tp": 20.5, "v": 229.5, "pw": 0, "sw": False})
    assert "online" in recorder.statuses()
    await client.aclose()


@pytest.mark.asyncio
async def test_session_id_is_merged_into_existing_query(classes, recorder) -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, text=DEVICE_LIST)

    conf = {"url": "http://fritz.box", "identifier": "08761 0000434", "username": "home", "password": "secret"}
    controller = _controller(classes, "fritz_plug", conf, PLUG_FEATURES, recorder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://fritz.box")
    poller = HttpPoller(controller, client=client)
    poller.authenticator = SessionAuthenticator(client, username="home", password="secret")
    poller.authenticator.sid = "1a2b3c4d5e6f7a8b"

    await poller.request("/webservices/homeautoswitch.lua?switchcmd=getdevicelistinfos")
    await poller.request("/webservices/homeautoswitch.lua?switchcmd=setswitchon&ain=087610000434", decode=False)

    assert seen[0].path == "/webservices/homeautoswitch.lua"
    assert dict(seen[0].params) == {"switchcmd": "getdevicelistinfos", "sid": "1a2b3c4d5e6f7a8b"}
    assert dict(seen[1].params) == {"switchcmd": "setswitchon", "ain": "087610000434", "sid": "1a2b3c4d5e6f7a8b"}
    await client.aclose()


@pytest.mark.asyncio
async def test_reauth_ceiling_stops_polling(classes, recorder, monkeypatch) -> None:
    controller = _controller(classes, "mystrom_switch", {"ip": "10.0.0.5"}, MYSTROM_FEATURES, recorder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)), base_url="http://x")
    poller = HttpPoller(controller, client=client)

    async def refused() -> None:
        raise ReauthLimitError("Exceeded maximum of 20 login attempts")

    monkeypatch.setattr(poller, "poll_once", refused)

    with pytest.raises(ReauthLimitError):
        await asyncio.wait_for(poller._run(), timeout=5)
    await client.aclose()


def test_poller_needs_initialised_controller(classes, recorder) -> None:
    controller = DriverService(classes=classes).create_adapter(
        "mystrom_switch", emit=recorder, scheduler=FakeScheduler()
    )
    with pytest.raises(ValueError):
        HttpPoller(controller)
