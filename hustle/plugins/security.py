"""
Plugin trust verification.

A bundle's tool descriptions and callback source are serialized into a
canonical string and a signature over that string is checked before the
bundle is registered.  Two schemes are supported:

  hmac      HMAC-SHA256 with a shared key (a public development key is used
            when none is configured).
  ed25519   Ed25519 signatures checked against a configured public key.
            Keys are exchanged hex-encoded: the public key as 32 raw bytes,
            the private key as PKCS#8 DER.
"""

from __future__ import annotations

import hashlib
import hmac
import inspect
import json
import logging
import textwrap
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from hustle.config import SecurityConfig
from hustle.plugins.base import PluginBundle

logger = logging.getLogger(__name__)


TRUSTED_BUILTINS = frozenset(
    {
        "predictionMarket",
        "migrateFun",
        "piiProtection",
        "userQuestion",
        "alert",
        "jsExecutor",
        "screenshot",
        "pluginBuilder",
    }
)

# Public development key.  Production deployments should configure their own
# key or use ed25519.
DEV_HMAC_KEY = "hustle-plugin-signing-key-v1"


class SigningAlgorithm(str, Enum):
    HMAC = "hmac"
    ED25519 = "ed25519"


class VerificationReason(str, Enum):
    SKIP_VERIFICATION = "skip_verification"
    TRUSTED_BUILTIN = "trusted_builtin"
    SIGNATURE_VALID = "signature_valid"
    SIGNATURE_INVALID = "signature_invalid"
    NO_SIGNATURE = "no_signature"
    CUSTOM_VERIFIER = "custom_verifier"
    VERIFICATION_ERROR = "verification_error"


@dataclass(frozen=True)
class VerificationOutcome:
    verified: bool
    reason: VerificationReason
    plugin_name: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "verified": self.verified,
            "reason": self.reason.value,
            "pluginName": self.plugin_name,
        }
        if self.error is not None:
            d["error"] = self.error
        return d


# ---------------------------------------------------------------------------
# Canonical serialization
# ---------------------------------------------------------------------------


def _callback_source(fn: Any) -> str:
    if not callable(fn):
        return str(fn)
    try:
        return textwrap.dedent(inspect.getsource(fn))
    except (OSError, TypeError):
        return getattr(fn, "__qualname__", None) or repr(fn)


def serialize_plugin_code(bundle: PluginBundle) -> str:
    """
    Deterministic string form of a bundle's executable surface.

    Covers name, version, each tool's name and description, and the source
    of every callback with callbacks sorted by tool name.  Parameter schemas
    and hooks are not covered.
    """
    code = {
        "name": bundle.name,
        "version": bundle.version,
        "tools": [{"name": t.name, "description": t.description} for t in bundle.tools],
        "executors": {
            key: _callback_source(bundle.executors[key]) for key in sorted(bundle.executors)
        },
    }
    return json.dumps(code, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# HMAC-SHA256
# ---------------------------------------------------------------------------


def sign_code_hmac(code: str, key: str | None = None) -> str:
    digest = hmac.new((key or DEV_HMAC_KEY).encode("utf-8"), code.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def verify_signature_hmac(code: str, signature: str, key: str | None = None) -> bool:
    if not isinstance(signature, str):
        return False
    expected = sign_code_hmac(code, key)
    return hmac.compare_digest(expected, signature.lower())


# ---------------------------------------------------------------------------
# Ed25519
# ---------------------------------------------------------------------------


def generate_ed25519_keypair() -> tuple[str, str]:
    """Return ``(public_key_hex, private_key_hex)``."""
    private_key = Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return public_bytes.hex(), private_bytes.hex()


def sign_code_ed25519(code: str, private_key_hex: str) -> str:
    private_key = serialization.load_der_private_key(bytes.fromhex(private_key_hex), password=None)
    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValueError("Private key is not an Ed25519 key")
    return private_key.sign(code.encode("utf-8")).hex()


def verify_signature_ed25519(code: str, signature: str, public_key_hex: str) -> bool:
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        public_key.verify(bytes.fromhex(signature), code.encode("utf-8"))
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


def sign_plugin(
    bundle: PluginBundle,
    *,
    algorithm: SigningAlgorithm | str = SigningAlgorithm.HMAC,
    private_key: str | None = None,
    hmac_key: str | None = None,
) -> str:
    """Sign *bundle*'s serialized code and return the hex signature."""
    code = serialize_plugin_code(bundle)
    if SigningAlgorithm(algorithm) == SigningAlgorithm.ED25519:
        if not private_key:
            raise ValueError("Ed25519 signing requires private_key")
        return sign_code_ed25519(code, private_key)
    return sign_code_hmac(code, hmac_key)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def is_trusted_builtin(plugin_name: str, config: SecurityConfig | None = None) -> bool:
    trusted = TRUSTED_BUILTINS
    if config is not None and config.trusted_builtins is not None:
        trusted = frozenset(config.trusted_builtins)
    return plugin_name in trusted


async def verify_plugin_code(
    plugin_name: str,
    code: str,
    signature: str | None,
    config: SecurityConfig,
) -> VerificationOutcome:
    """
    Decide whether a bundle may be registered.

    Checks run in order: skip flag, trusted allow-list, missing signature,
    custom verifier, built-in algorithm.  The first check that decides wins.
    """
    if config.skip_verification:
        return VerificationOutcome(True, VerificationReason.SKIP_VERIFICATION, plugin_name)

    if config.allow_trusted_builtins and is_trusted_builtin(plugin_name, config):
        return VerificationOutcome(True, VerificationReason.TRUSTED_BUILTIN, plugin_name)

    if not signature:
        return VerificationOutcome(
            False,
            VerificationReason.NO_SIGNATURE,
            plugin_name,
            f'Plugin "{plugin_name}" has no signature',
        )

    if config.custom_verifier is not None:
        try:
            result = config.custom_verifier(plugin_name, code, signature)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.debug("Custom verifier raised for %s", plugin_name, exc_info=True)
            return VerificationOutcome(
                False,
                VerificationReason.VERIFICATION_ERROR,
                plugin_name,
                f"Custom verifier error: {e}",
            )
        if result:
            return VerificationOutcome(True, VerificationReason.CUSTOM_VERIFIER, plugin_name)
        return VerificationOutcome(
            False,
            VerificationReason.SIGNATURE_INVALID,
            plugin_name,
            "Custom verifier rejected signature",
        )

    try:
        algorithm = SigningAlgorithm(config.algorithm)
    except ValueError:
        return VerificationOutcome(
            False,
            VerificationReason.VERIFICATION_ERROR,
            plugin_name,
            f"Unsupported signing algorithm: {config.algorithm}",
        )

    if algorithm == SigningAlgorithm.ED25519:
        if not config.public_key:
            return VerificationOutcome(
                False,
                VerificationReason.VERIFICATION_ERROR,
                plugin_name,
                "Ed25519 verification requires public_key in config",
            )
        valid = verify_signature_ed25519(code, signature, config.public_key)
    else:
        valid = verify_signature_hmac(code, signature, config.hmac_key or None)

    if valid:
        return VerificationOutcome(True, VerificationReason.SIGNATURE_VALID, plugin_name)
    return VerificationOutcome(
        False,
        VerificationReason.SIGNATURE_INVALID,
        plugin_name,
        "Signature verification failed",
    )
