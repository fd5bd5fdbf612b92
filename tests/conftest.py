import os

# Settings are read at import time by verisure.db / verisure.main
os.environ["JWT_SECRET"] = "test-secret-for-verisure-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LEDGER_RPC_URL"] = ""
os.environ["LEDGER_CONTRACT_ADDRESS"] = ""
os.environ["LEDGER_ACCOUNT"] = ""
os.environ["SENTRY_DSN"] = ""

import struct
import zlib
from unittest.mock import MagicMock

import httpx
import pytest

from verisure.auth import create_access_token
from verisure.db import build_engine, build_session_maker, create_tables, get_session
from verisure.directory import ProductDirectory
from verisure.ledger import LedgerGateway, SignerCapability
from verisure.verification import VerificationService


async def _make_session_maker(with_tables=True):
    engine = build_engine("sqlite+aiosqlite://")
    if with_tables:
        await create_tables(engine)
    return engine, build_session_maker(engine)


@pytest.fixture
async def session_maker():
    engine, maker = await _make_session_maker()
    yield maker
    await engine.dispose()


@pytest.fixture
async def broken_session_maker():
    """A database without the products table; every query fails."""
    engine, maker = await _make_session_maker(with_tables=False)
    yield maker
    await engine.dispose()


@pytest.fixture
def directory(session_maker):
    return ProductDirectory(session_maker)


@pytest.fixture
def offline_ledger():
    return LedgerGateway(SignerCapability(rpc_url="", contract_address="", has_signer=False))


@pytest.fixture
def ledger_spy():
    """Ledger double reporting itself unavailable; async methods are AsyncMocks."""
    ledger = MagicMock(spec=LedgerGateway)
    ledger.is_available.return_value = False
    return ledger


@pytest.fixture
def service(offline_ledger, directory):
    return VerificationService(ledger=offline_ledger, directory=directory)


@pytest.fixture
async def client(service, session_maker):
    from verisure.main import app

    async def override_session():
        async with session_maker() as session:
            yield session

    previous = app.state.verification
    app.state.verification = service
    app.dependency_overrides[get_session] = override_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    app.state.verification = previous


def oversized_png(width=30000, height=30000):
    """A tiny PNG whose header declares far more pixels than Pillow will open."""
    def chunk(kind, data):
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))

    header = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IEND", b"")


def auth_header(role, subject=None):
    token = create_access_token(subject or f"{role}-1", role, email=f"{role}@verisure.test")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_header("admin")


@pytest.fixture
def manufacturer_headers():
    return auth_header("manufacturer")


@pytest.fixture
def customer_headers():
    return auth_header("customer")
