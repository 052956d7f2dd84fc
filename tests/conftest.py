"""
Pytest configuration and fixtures for rain-issuing tests.
"""
from __future__ import annotations

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from rain_helpers import TUESDAY_MORNING_UTC, FakeRainServer, public_pem
from rain_issuing import AsyncRainClient, Environment, FixedClock
from rain_issuing.compliance import ComplianceRegistry
from rain_issuing.secure_session import PublicKeyring, SecureSessionProtocol
from rain_issuing.service import CardService
from rain_issuing.shipping import ShipmentBatcher


@pytest.fixture(scope="session")
def dev_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def prod_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def keyring(dev_private_key, prod_private_key) -> PublicKeyring:
    return PublicKeyring.from_pem(
        dev=public_pem(dev_private_key),
        production=public_pem(prod_private_key),
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TUESDAY_MORNING_UTC)


@pytest.fixture
def sessions(keyring, clock) -> SecureSessionProtocol:
    return SecureSessionProtocol(keyring, clock=clock)


@pytest.fixture
def server(dev_private_key) -> FakeRainServer:
    return FakeRainServer(private_key=dev_private_key)


@pytest.fixture
def api_key() -> str:
    return "rain-test-api-key-0123456789"


@pytest.fixture
async def client(server, api_key):
    async with AsyncRainClient(
        api_key=api_key,
        environment=Environment.DEV,
        transport=httpx.MockTransport(server.handler),
    ) as c:
        yield c


@pytest.fixture
def compliance() -> ComplianceRegistry:
    return ComplianceRegistry({"user-approved": "approved", "user-pending": "pending"})


@pytest.fixture
async def service(client, sessions, compliance, clock):
    yield CardService(
        client=client,
        sessions=sessions,
        compliance=compliance,
        batcher=ShipmentBatcher(clock=clock),
        clock=clock,
    )
