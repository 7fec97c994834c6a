"""
Fixtures for provider adapter tests: scripted transport and signing keys.
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from tests.fixtures.stubs import FakeTransport


def _pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def _public_pem(private_key) -> str:
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(scope="session")
def ec_key():
    """P-256 key as used for Apple client assertions and MusicKit developer tokens."""
    key = ec.generate_private_key(ec.SECP256R1())
    return {"private": _pem(key), "public": _public_pem(key)}


@pytest.fixture(scope="session")
def rsa_key():
    """RSA key standing in for one of Apple's id_token signing keys."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return {"private": _pem(key), "public": _public_pem(key)}
