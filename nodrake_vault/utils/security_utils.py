"""Random tokens, digests and PKCE helpers."""

import base64
import hashlib
import hmac
import secrets


def _urlsafe_b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_state_token(num_bytes: int = 32) -> str:
    return secrets.token_urlsafe(num_bytes)


def hash_state_token(state_token: str) -> str:
    """SHA-256 hex digest used as the storage key for a state token."""
    return hashlib.sha256(state_token.encode("utf-8")).hexdigest()


def generate_code_verifier() -> str:
    # RFC 7636 allows 43-128 characters; 64 random bytes encode to 86
    return secrets.token_urlsafe(64)


def generate_code_challenge(code_verifier: str) -> str:
    """S256 code challenge for ``code_verifier``."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _urlsafe_b64(digest)


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def fingerprint(value: str) -> str:
    """Short non-reversible tag for correlating a secret in logs."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]
