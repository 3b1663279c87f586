"""Default request construction for the chat endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hustle.types import ChatMessage


DEFAULT_VAULT_ID = "unspecified-incognito"
DEFAULT_SLIPPAGE = {"lpSlippage": 5, "swapSlippage": 5, "pumpSlippage": 5}


def _message_dict(message: ChatMessage | dict) -> dict:
    if isinstance(message, ChatMessage):
        return message.to_dict()
    return dict(message)


def attach_to_last_user_message(messages: list[dict], attachments: list[dict]) -> list[dict]:
    """
    Return a copy of *messages* whose last user message carries *attachments*
    as ``experimental_attachments`` plus a single text part.
    """
    out = list(messages)
    for idx in range(len(out) - 1, -1, -1):
        if out[idx].get("role") != "user":
            continue
        msg = dict(out[idx])
        content = msg.get("content") or ""
        msg["content"] = content
        msg["experimental_attachments"] = [
            {
                "contentType": a.get("contentType") or "image/png",
                "name": a.get("name") or "uploaded-image",
                "url": a.get("url") or "",
            }
            for a in attachments
        ]
        msg["parts"] = [{"type": "text", "text": content}]
        out[idx] = msg
        break
    return out


@dataclass
class RequestBuilder:
    """
    Builds the next request body from the current message history.

    Everything except the messages is fixed for the lifetime of one call;
    the orchestration loop calls the builder once per round.
    """

    api_key: str
    vault_id: str = DEFAULT_VAULT_ID
    model: str = ""
    external_wallet_address: str = ""
    slippage_settings: dict[str, Any] | None = None
    safe_mode: bool = True
    current_path: str | None = None
    selected_tool_categories: list[str] = field(default_factory=list)
    attachments: list[dict] = field(default_factory=list)

    def __call__(self, messages: list[ChatMessage | dict]) -> dict:
        if not self.api_key:
            raise ValueError("API key is required")

        wire_messages = [_message_dict(m) for m in messages]
        if self.attachments:
            wire_messages = attach_to_last_user_message(wire_messages, self.attachments)

        body: dict[str, Any] = {
            "id": f"chat-{self.vault_id}",
            "messages": wire_messages,
            "apiKey": self.api_key,
            "vaultId": self.vault_id,
            "externalWalletAddress": self.external_wallet_address,
            "slippageSettings": dict(self.slippage_settings or DEFAULT_SLIPPAGE),
            "safeMode": self.safe_mode,
            "currentPath": self.current_path,
            "attachments": list(self.attachments),
            "selectedToolCategories": list(self.selected_tool_categories),
        }
        if self.model:
            body["model"] = self.model
        return body
