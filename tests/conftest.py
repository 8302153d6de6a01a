"""Shared fixtures: fast codec, temp storage, fake scheduler and relay transport."""

from __future__ import annotations

import base64
import hashlib
import os
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from keyquota.codec import CredentialCodec
from keyquota.controller import AppController
from keyquota.relay import RelayClient
from keyquota.store import HistoryLog, KeyValueStore, PersistenceStore

FINGERPRINT = "f" * 64
KEY_A = "8c6e0a52-3f1d-4b2a-9e7c-1a2b3c4d5e6f:fx"
KEY_B = "0f3b9d21-77aa-4c1e-8d2f-aabbccddeeff"
KEY_C = "d4e5f6a7-1111-2222-3333-444455556666:fx"


def cryptojs_encrypt(plaintext: str, passphrase: str) -> str:
    """Produce what the browser build stored: CryptoJS AES.encrypt(text, passphrase)."""
    salt = os.urandom(8)
    derived, block = b"", b""
    while len(derived) < 48:
        block = hashlib.md5(block + passphrase.encode() + salt).digest()
        derived += block
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode()) + padder.finalize()
    enc = Cipher(algorithms.AES(derived[:32]), modes.CBC(derived[32:48])).encryptor()
    return base64.b64encode(b"Salted__" + salt + enc.update(padded) + enc.finalize()).decode()


class FakeHandle:
    def __init__(self, scheduler: "FakeScheduler", callback: Callable[[], object]):
        self.scheduler = scheduler
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Collects call_later requests; tests fire them by hand."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[[], object]) -> FakeHandle:
        handle = FakeHandle(self, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def fire_next(self) -> None:
        handle = self.pending[0]
        self.handles.remove(handle)
        handle.callback()

    def run_all(self) -> int:
        fired = 0
        while self.pending:
            self.fire_next()
            fired += 1
        return fired


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingRenderer:
    def __init__(self) -> None:
        self.views = []
        self.notifications: list[tuple[str, str]] = []

    def render(self, view) -> None:
        self.views.append(view)

    def notify(self, level: str, message: str) -> None:
        self.notifications.append((level, message))

    @property
    def last_view(self):
        return self.views[-1] if self.views else None

    def levels(self) -> list[str]:
        return [level for level, _ in self.notifications]


class RelayStub:
    """Routes relay requests: ?action=init returns a token, everything else a usage body."""

    def __init__(self, status: int = 200, body: Optional[dict] = None, token: str = "tok123"):
        self.status = status
        self.body = body if body is not None else {"character_count": 1200, "character_limit": 500000}
        self.token = token
        self.usage_calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.params.get("action") == "init":
            return httpx.Response(200, json={"token": self.token})
        self.usage_calls.append(request)
        return httpx.Response(self.status, json=self.body)


@pytest.fixture()
def codec() -> CredentialCodec:
    return CredentialCodec(FINGERPRINT, iterations=1000)


@pytest.fixture()
def kv(tmp_path) -> KeyValueStore:
    return KeyValueStore(tmp_path / "storage.json")


@pytest.fixture()
def store(kv, codec) -> PersistenceStore:
    return PersistenceStore(kv, codec)


@pytest.fixture()
def history(kv) -> HistoryLog:
    return HistoryLog(kv)


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture()
def relay_stub() -> RelayStub:
    return RelayStub()


@pytest_asyncio.fixture()
async def relay(relay_stub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(relay_stub)) as client:
        yield RelayClient("http://relay.test/api.php", client)


@pytest.fixture()
def controller(store, history, renderer, scheduler, clock) -> AppController:
    """Offline, already-loaded controller; check tests attach a relay explicitly."""
    controller = AppController(store, history, None, renderer, scheduler,
                               cooldown_seconds=10, clock=clock, wall_clock=clock)
    controller.load()
    return controller


@pytest_asyncio.fixture()
async def online_controller(controller, relay) -> AppController:
    controller.relay = relay
    await relay.init_session()
    return controller
