"""Plugin bundles, trust verification and the plugin registry."""

from hustle.plugins.base import PluginBundle, PluginHooks, ToolSchema
from hustle.plugins.registry import PluginRegistry
from hustle.plugins.security import (
    TRUSTED_BUILTINS,
    SigningAlgorithm,
    VerificationOutcome,
    VerificationReason,
    generate_ed25519_keypair,
    is_trusted_builtin,
    serialize_plugin_code,
    sign_code_ed25519,
    sign_code_hmac,
    sign_plugin,
    verify_plugin_code,
    verify_signature_ed25519,
    verify_signature_hmac,
)
from hustle.plugins.validation import ArgumentValidator, validate_bundle

__all__ = [
    "ArgumentValidator",
    "PluginBundle",
    "PluginHooks",
    "PluginRegistry",
    "SigningAlgorithm",
    "TRUSTED_BUILTINS",
    "ToolSchema",
    "VerificationOutcome",
    "VerificationReason",
    "generate_ed25519_keypair",
    "is_trusted_builtin",
    "serialize_plugin_code",
    "sign_code_ed25519",
    "sign_code_hmac",
    "sign_plugin",
    "validate_bundle",
    "verify_plugin_code",
    "verify_signature_ed25519",
    "verify_signature_hmac",
]
