"""Scan filtering and bleak-backed link tests."""

from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

from padctrl import link as link_module
from padctrl.core import SERVICE_UUID, short_uuid
from padctrl.errors import UnsupportedTransport, UserCancelledSelection
from padctrl.link import BleakLink, ScanFilter, handle_address, handle_name


def advert(address, name, rssi, service_uuids=()):
    device = SimpleNamespace(address=address, name=name)
    adv = SimpleNamespace(local_name=name, rssi=rssi, service_uuids=list(service_uuids))
    return address, (device, adv)


def patch_discover(monkeypatch, adverts=None, error=None):
    async def discover(timeout, return_adv):
        if error is not None:
            raise error
        return dict(adverts)

    monkeypatch.setattr(link_module.BleakScanner, "discover", discover)


def test_uuid_constants():
    assert SERVICE_UUID == short_uuid(0xFE00)
    assert SERVICE_UUID.startswith("0000fe00-")


def test_scan_filter_matching():
    criteria = ScanFilter()
    assert criteria.matches("WalkingPad", [])
    assert criteria.matches("KS-ST-A1P", [])
    assert criteria.matches(None, [SERVICE_UUID])
    assert not criteria.matches("Headphones", [])
    assert not criteria.matches(None, [])
    assert ScanFilter(accept_all=True).matches(None, [])


def test_handle_helpers():
    device = SimpleNamespace(address="AA", name=None)
    assert handle_address(device) == "AA"
    assert handle_name(device) == "AA"
    assert handle_name("BB") == "BB"


@pytest.mark.asyncio
async def test_scan_prefers_service_then_signal(monkeypatch):
    patch_discover(
        monkeypatch,
        [
            advert("01", "WalkingPad", -40),
            advert("02", "KS-R1", -80, [SERVICE_UUID]),
            advert("03", "Phone", -30),
        ],
    )
    seen = []

    def chooser(devices):
        seen.extend(device.address for device in devices)
        return devices[0]

    chosen = await BleakLink(chooser=chooser).scan(ScanFilter())

    assert seen == ["02", "01"]
    assert chosen.address == "02"


@pytest.mark.asyncio
async def test_scan_without_match_raises(monkeypatch):
    patch_discover(monkeypatch, [advert("03", "Phone", -30)])
    with pytest.raises(UserCancelledSelection):
        await BleakLink().scan(ScanFilter())


@pytest.mark.asyncio
async def test_scan_adapter_failure(monkeypatch):
    patch_discover(monkeypatch, error=BleakError("Bluetooth adapter not found"))
    with pytest.raises(UnsupportedTransport):
        await BleakLink().scan(ScanFilter())


@pytest.mark.asyncio
async def test_bonded_devices_come_from_configuration():
    link = BleakLink(known_addresses=["AA:BB"])
    assert await link.get_bonded_devices() == ["AA:BB"]


def test_disconnect_callbacks_are_dispatched_per_client():
    link = BleakLink()
    client_a, client_b = object(), object()
    fired = []
    link.on_disconnected(client_a, lambda: fired.append("a"))
    link.on_disconnected(client_b, lambda: fired.append("b"))

    link._handle_disconnect(client_b)
    link._handle_disconnect(client_b)

    assert fired == ["b"]
