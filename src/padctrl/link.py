"""
Bluetooth LE link capability.

``BleLink`` is the set of platform primitives the session and supervisor
consume. ``BleakLink`` implements it on top of bleak.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError

from .core import CONNECT_TIMEOUT, DEVICE_NAME_PREFIXES, SCAN_TIMEOUT, SERVICE_UUID
from .errors import ServiceNotFound, UnsupportedTransport, UserCancelledSelection

logger = logging.getLogger(__name__)

StopWatching = Callable[[], Awaitable[None]]


@dataclass
class ScanFilter:
    """Which advertised devices a scan may return."""

    name_prefixes: tuple[str, ...] = DEVICE_NAME_PREFIXES
    accept_all: bool = False
    service_uuid: str = SERVICE_UUID
    timeout: float = SCAN_TIMEOUT

    def matches(self, name: Optional[str], service_uuids: list[str]) -> bool:
        if self.accept_all:
            return True
        if self.service_uuid in service_uuids:
            return True
        if not name:
            return False
        lowered = name.lower()
        return any(lowered.startswith(prefix.lower()) for prefix in self.name_prefixes)


def handle_address(handle: Any) -> str:
    """Stable key for a peripheral handle (device object or address)."""
    return str(getattr(handle, "address", handle))


def handle_name(handle: Any) -> str:
    return getattr(handle, "name", None) or handle_address(handle)


class BleLink(ABC):
    """Platform Bluetooth LE primitives."""

    can_list_bonded = False
    can_watch_advertisements = False

    @abstractmethod
    async def scan(self, criteria: ScanFilter) -> Any:
        """Find one peripheral handle matching ``criteria``."""

    @abstractmethod
    async def connect_gatt(self, handle: Any) -> Any:
        """Open a GATT connection and return the link object."""

    @abstractmethod
    def is_connected(self, gatt: Any) -> bool:
        ...

    @abstractmethod
    async def get_service(self, gatt: Any, uuid: str) -> Any:
        ...

    @abstractmethod
    async def get_characteristic(self, service: Any, uuid: str) -> Any:
        ...

    @abstractmethod
    async def subscribe_notifications(
        self, characteristic: Any, on_value: Callable[[bytes], None]
    ) -> None:
        ...

    @abstractmethod
    async def unsubscribe_notifications(self, characteristic: Any) -> None:
        ...

    @abstractmethod
    async def write_without_response(self, characteristic: Any, data: bytes) -> None:
        ...

    @abstractmethod
    async def disconnect(self, gatt: Any) -> None:
        ...

    @abstractmethod
    def on_disconnected(self, gatt: Any, callback: Callable[[], None]) -> None:
        """Register ``callback`` to run when ``gatt`` drops."""

    async def get_bonded_devices(self) -> list[Any]:
        raise NotImplementedError("Bonded device listing not supported")

    async def watch_advertisements(
        self, handle: Any, callback: Callable[[], None]
    ) -> StopWatching:
        raise NotImplementedError("Advertisement watching not supported")


@dataclass
class GattService:
    client: BleakClient
    service: BleakGATTService


@dataclass
class GattCharacteristic:
    client: BleakClient
    characteristic: BleakGATTCharacteristic


@dataclass
class BleakLink(BleLink):
    """BleLink backed by bleak."""

    known_addresses: list[str] = field(default_factory=list)
    connect_timeout: float = CONNECT_TIMEOUT
    chooser: Optional[Callable[[list[BLEDevice]], Optional[BLEDevice]]] = None

    can_list_bonded = True
    can_watch_advertisements = True

    def __post_init__(self) -> None:
        self._disconnect_callbacks: dict[int, Callable[[], None]] = {}

    async def scan(self, criteria: ScanFilter) -> BLEDevice:
        logger.info("Scanning for WalkingPad devices...")
        try:
            found = await BleakScanner.discover(timeout=criteria.timeout, return_adv=True)
        except (BleakError, OSError) as e:
            raise UnsupportedTransport(f"Bluetooth LE unavailable: {e}") from e

        candidates: list[tuple[BLEDevice, AdvertisementData]] = []
        for device, adv in found.values():
            name = device.name or adv.local_name
            if criteria.matches(name, list(adv.service_uuids)):
                candidates.append((device, adv))

        # Devices advertising the service first, then by signal strength
        candidates.sort(
            key=lambda item: (criteria.service_uuid not in item[1].service_uuids, -item[1].rssi)
        )
        devices = [device for device, _ in candidates]

        chosen: Optional[BLEDevice]
        if self.chooser is not None:
            chosen = self.chooser(devices)
        else:
            chosen = devices[0] if devices else None

        if chosen is None:
            raise UserCancelledSelection("No WalkingPad selected")
        logger.info(f"Found device: {chosen.name or 'Unknown'} ({chosen.address})")
        return chosen

    def _handle_disconnect(self, client: BleakClient) -> None:
        callback = self._disconnect_callbacks.pop(id(client), None)
        if callback is not None:
            callback()

    async def connect_gatt(self, handle: Any) -> BleakClient:
        client = BleakClient(
            handle,
            disconnected_callback=self._handle_disconnect,
            timeout=self.connect_timeout,
        )
        await client.connect()
        return client

    def is_connected(self, gatt: BleakClient) -> bool:
        return gatt.is_connected

    async def get_service(self, gatt: BleakClient, uuid: str) -> GattService:
        service = gatt.services.get_service(uuid)
        if service is None:
            raise ServiceNotFound(f"Service {uuid} not found")
        return GattService(gatt, service)

    async def get_characteristic(self, service: GattService, uuid: str) -> GattCharacteristic:
        characteristic = service.service.get_characteristic(uuid)
        if characteristic is None:
            raise ServiceNotFound(f"Characteristic {uuid} not found")
        return GattCharacteristic(service.client, characteristic)

    async def subscribe_notifications(
        self, characteristic: GattCharacteristic, on_value: Callable[[bytes], None]
    ) -> None:
        def handler(_sender: Any, data: bytearray) -> None:
            on_value(bytes(data))

        await characteristic.client.start_notify(characteristic.characteristic, handler)

    async def unsubscribe_notifications(self, characteristic: GattCharacteristic) -> None:
        await characteristic.client.stop_notify(characteristic.characteristic)

    async def write_without_response(
        self, characteristic: GattCharacteristic, data: bytes
    ) -> None:
        await characteristic.client.write_gatt_char(
            characteristic.characteristic, data, response=False
        )

    async def disconnect(self, gatt: BleakClient) -> None:
        await gatt.disconnect()

    def on_disconnected(self, gatt: BleakClient, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks[id(gatt)] = callback

    async def get_bonded_devices(self) -> list[Any]:
        # bleak has no portable bonded-device query; remembered addresses
        # come from configuration
        return list(self.known_addresses)

    async def watch_advertisements(
        self, handle: Any, callback: Callable[[], None]
    ) -> StopWatching:
        address = handle_address(handle).upper()

        def detection(device: BLEDevice, _adv: AdvertisementData) -> None:
            if device.address.upper() == address:
                callback()

        scanner = BleakScanner(detection_callback=detection)
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            raise UnsupportedTransport(f"Cannot watch advertisements: {e}") from e
        logger.info(f"Watching for advertisements from {address}")

        async def stop() -> None:
            await scanner.stop()

        return stop
