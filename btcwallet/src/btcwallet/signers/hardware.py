"""
Hardware wallet signer.

The device SDK is reached through the DeviceManager / DeviceSigner protocols.
Every device request is an action: an async stream of DeviceActionEvent that
ends in COMPLETED, ERROR or STOPPED. The signer never sees a private key.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from embit.ec import PublicKey as EcPublicKey
from embit.psbt import PSBT
from loguru import logger

from btcwallet.errors import DeviceActionError, DeviceActionStoppedError, DeviceNotReadyError
from btcwallet.signers.base import ConfigLike, Signer, SignerCapability, full_derivation_path, path_index
from btcwallet.wallet.bip32 import (
    EXTENDED_PUBLIC_KEY_VERSIONS,
    ExtendedPublicKey,
    coin_type,
    parse_extended_public_key,
    parse_path,
)
from btcwallet.wallet.scripts import (
    build_payment_script,
    detect_input_ownership,
    ensure_witness_utxo_if_needed,
    load_psbt,
)
from btcwallet.wallet.signing import verify_message


class DeviceStatus(str, Enum):
    CONNECTED = "connected"
    NOT_CONNECTED = "not_connected"
    LOCKED = "locked"
    BUSY = "busy"


class DeviceActionStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DeviceActionEvent:
    status: DeviceActionStatus
    output: Any = None
    error: Any = None
    # What the device is waiting for while PENDING, e.g. "unlock-device"
    interaction: str | None = None


@dataclass(frozen=True)
class PartialSignature:
    input_index: int
    public_key: bytes
    signature: bytes


@dataclass(frozen=True)
class MessageSignature:
    r: str
    s: str
    v: int


DeviceAction = AsyncIterable[DeviceActionEvent]


class DeviceSigner(Protocol):
    """Bitcoin app on a connected device."""

    def get_extended_public_key(self, path: str, skip_open_app: bool = False) -> DeviceAction: ...

    def get_wallet_address(
        self,
        account_path: str,
        bip: int,
        address_index: int,
        change: bool = False,
        skip_open_app: bool = False,
    ) -> DeviceAction: ...

    def sign_psbt(
        self, account_path: str, bip: int, psbt: PSBT, skip_open_app: bool = False
    ) -> DeviceAction: ...

    def sign_message(self, path: str, message: str | bytes, skip_open_app: bool = False) -> DeviceAction: ...


class DeviceManager(Protocol):
    """Discovery and session management for hardware devices."""

    async def discover(self) -> Any: ...

    async def connect(self, device: Any) -> str: ...

    async def reconnect(self, session_id: str) -> str: ...

    async def disconnect(self, session_id: str) -> None: ...

    async def get_device_status(self, session_id: str) -> DeviceStatus: ...

    def create_signer(self, session_id: str) -> DeviceSigner: ...


async def consume_device_action(action: DeviceAction) -> Any:
    """
    Wait for the terminal event of a device action.

    Returns:
        The output of the COMPLETED event

    Raises:
        DeviceActionError: If the device reports an error
        DeviceActionStoppedError: If the action was stopped (user cancel, device blocked)
    """
    async for event in action:
        if event.status is DeviceActionStatus.COMPLETED:
            return event.output
        if event.status is DeviceActionStatus.ERROR:
            error = event.error or "Unknown device error"
            if isinstance(error, BaseException):
                raise DeviceActionError(str(error)) from error
            raise DeviceActionError(str(error))
        if event.status is DeviceActionStatus.STOPPED:
            raise DeviceActionStoppedError("Device action stopped")

        if event.interaction:
            logger.info(f"Waiting for device: {event.interaction}")

    raise DeviceActionError("Device action ended without a result")


def _hex_component(value: Any) -> bytes:
    if isinstance(value, bytes | bytearray):
        return bytes(value).rjust(32, b"\x00")
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    text = str(value)
    if text[:2].lower() == "0x":
        text = text[2:]
    return bytes.fromhex(text.rjust(64, "0"))


class HardwareSigner(Signer):
    """
    Signer for the key at m/{bip}'/{coin}'/{account}'/{change}/{index} on a device.

    The device is discovered and connected lazily by the first operation.
    Before each action the session state is checked: LOCKED or BUSY fail with
    DeviceNotReadyError and are not retried, NOT_CONNECTED (or an unreadable
    state) gets one reconnect attempt.
    """

    capabilities = frozenset(
        {SignerCapability.HD_DERIVATION, SignerCapability.EXTENDED_PUBLIC_KEY, SignerCapability.VERIFY}
    )

    def __init__(self, relative_path: str, config: ConfigLike = None, *, device_manager: DeviceManager):
        super().__init__(config)
        self._path = full_derivation_path(self.config, relative_path)

        indexes = parse_path(self._path)
        if len(indexes) != 5:
            raise ValueError(f"Expected account'/change/index below the coin level, got {relative_path!r}")

        self._account_path = "/".join(self._path.split("/")[1:4])
        self._change = indexes[3]
        self._address_index = indexes[4]

        # Test network apps do not need to be opened explicitly
        self.skip_open_app = coin_type(self.config.network) == 1

        self._device_manager = device_manager
        self._session_id: str | None = None
        self._device_signer: DeviceSigner | None = None
        self._address: str | None = None
        self._extended_key: ExtendedPublicKey | None = None
        self._disconnect_task: asyncio.Task[None] | None = None

    @property
    def path(self) -> str:
        self._require_active()
        return self._path

    @property
    def index(self) -> int:
        self._require_active()
        return path_index(self._path)

    @property
    def address(self) -> str | None:
        """Address cached by the last device connection, None before the first one."""
        self._require_active()
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._device_signer is not None

    # ------------------------------------------------------------------
    # Device session
    # ------------------------------------------------------------------

    async def _connect(self) -> None:
        device = await self._device_manager.discover()
        self._session_id = await self._device_manager.connect(device)
        self._device_signer = self._device_manager.create_signer(self._session_id)
        logger.info(f"Connected to hardware device, session {self._session_id}")

        try:
            address = await consume_device_action(
                self._device_signer.get_wallet_address(
                    self._account_path,
                    self.config.bip,
                    self._address_index,
                    change=self._change == 1,
                    skip_open_app=self.skip_open_app,
                )
            )
            xpub = await consume_device_action(
                self._device_signer.get_extended_public_key(self._path, skip_open_app=self.skip_open_app)
            )
        except Exception:
            await self._disconnect()
            raise

        self._address = address if isinstance(address, str) else address["address"]
        self._extended_key = parse_extended_public_key(xpub)

    async def _disconnect(self) -> None:
        session_id = self._session_id
        self._device_signer = None
        self._session_id = None
        if session_id is None:
            return
        try:
            await self._device_manager.disconnect(session_id)
        except Exception as e:
            logger.warning(f"Failed to disconnect hardware device session {session_id}: {e}")

    async def _reconnect(self) -> None:
        if self._session_id is None:
            await self._connect()
            return

        try:
            self._session_id = await self._device_manager.reconnect(self._session_id)
            self._device_signer = self._device_manager.create_signer(self._session_id)
            logger.info(f"Reconnected hardware device, session {self._session_id}")
        except Exception as e:
            logger.warning(f"Device session refresh failed ({e}), reconnecting from scratch")
            await self._disconnect()
            await self._connect()

    async def _ensure_device_ready(self, context: str) -> None:
        if self._session_id is None:
            return

        try:
            status = await self._device_manager.get_device_status(self._session_id)
        except Exception as e:
            logger.warning(f"Cannot read device state before {context}: {e}")
            await self._reconnect()
            return

        if status is DeviceStatus.LOCKED:
            raise DeviceNotReadyError("Device is locked")
        if status is DeviceStatus.BUSY:
            raise DeviceNotReadyError("Device is busy")
        if status is DeviceStatus.NOT_CONNECTED:
            logger.info(f"Device disconnected before {context}, reconnecting")
            await self._reconnect()

    def _session_state(self) -> tuple[DeviceSigner, str, ExtendedPublicKey]:
        if self._device_signer is None or self._address is None or self._extended_key is None:
            raise DeviceActionError("Hardware device session is not available")
        return self._device_signer, self._address, self._extended_key

    async def _prepare(self, context: str) -> tuple[DeviceSigner, str, ExtendedPublicKey]:
        """Check readiness, connect if needed, and return signer, address and key of the session."""
        self._require_active()
        await self._ensure_device_ready(context)
        if self._device_signer is None:
            await self._connect()
        return self._session_state()

    # ------------------------------------------------------------------
    # Signer surface
    # ------------------------------------------------------------------

    def derive(self, relative_path: str, config: ConfigLike = None) -> HardwareSigner:
        """New signer on the same device manager. It connects on first use."""
        self._require_active()
        merged = self.config.model_dump()
        if config is not None:
            merged.update({k: v for k, v in dict(config).items() if v is not None})
        return HardwareSigner(relative_path, merged, device_manager=self._device_manager)

    async def get_public_key(self) -> bytes:
        _, _, extended_key = await self._prepare("public key fetch")
        return extended_key.public_key

    async def get_address(self) -> str:
        _, address, _ = await self._prepare("address fetch")
        return address

    async def get_extended_public_key(self) -> str:
        _, _, extended_key = await self._prepare("extended public key export")
        version = EXTENDED_PUBLIC_KEY_VERSIONS[(self.config.bip, self.config.network)]
        return extended_key.serialize(version)

    async def sign(self, message: str | bytes) -> str:
        device_signer, _, _ = await self._prepare("message signing")

        # Devices take the path without the "m/" prefix
        relative = self._path[2:]
        output = await consume_device_action(
            device_signer.sign_message(relative, message, skip_open_app=self.skip_open_app)
        )
        if not isinstance(output, MessageSignature):
            output = MessageSignature(r=output["r"], s=output["s"], v=int(output["v"]))

        raw = bytes([output.v]) + _hex_component(output.r) + _hex_component(output.s)
        return base64.b64encode(raw).decode("ascii")

    async def verify(self, message: str | bytes, signature: str) -> bool:
        public_key = await self.get_public_key()
        return verify_message(public_key, message, signature)

    async def sign_psbt(self, psbt: PSBT | str | bytes) -> PSBT:
        device_signer, _, extended_key = await self._prepare("transaction signing")
        psbt = load_psbt(psbt)

        bip = self.config.bip
        my_script = build_payment_script(bip, extended_key.public_key, self.config.network)

        owned: set[int] = set()
        for index in range(len(psbt.inputs)):
            ownership = detect_input_ownership(psbt, index, my_script)
            if ownership.is_ours:
                ensure_witness_utxo_if_needed(psbt, index, bip, ownership.previous_output, ownership.input)
                owned.add(index)

        if not owned:
            logger.info("No PSBT inputs belong to this device key, nothing to sign")
            return psbt

        output = await consume_device_action(
            device_signer.sign_psbt(self._account_path, bip, psbt, skip_open_app=self.skip_open_app)
        )
        signatures = output if isinstance(output, list | tuple) else [output]

        merged = 0
        for partial in signatures:
            if not isinstance(partial, PartialSignature):
                logger.debug(f"Ignoring unsupported device signature output: {type(partial).__name__}")
                continue
            if partial.input_index not in owned:
                logger.warning(f"Ignoring device signature for foreign input {partial.input_index}")
                continue
            psbt_input = psbt.inputs[partial.input_index]
            psbt_input.partial_sigs[EcPublicKey.parse(partial.public_key)] = partial.signature
            merged += 1

        logger.info(f"Merged {merged} device signatures into PSBT ({len(owned)} owned inputs)")
        return psbt

    async def disconnect(self) -> None:
        """Close the device session. The next operation reconnects."""
        await self._disconnect()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._address = None
        self._extended_key = None

        if self._session_id is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop, dropping device session without disconnect")
                self._session_id = None
                self._device_signer = None
            else:
                self._disconnect_task = loop.create_task(self._disconnect())
        logger.debug("HardwareSigner disposed")
