"""Anchor account layouts of the oracle program.

Accounts are Borsh encoded and prefixed with an 8 byte discriminator,
``sha256("account:<Name>")[:8]``. Instruction data uses the same scheme with
``sha256("global:<method>")[:8]``.
"""

import hashlib
from dataclasses import dataclass, field
from typing import List

import base58
from construct import Bytes, ConstructError, Flag, Int32ul, PascalString, PrefixedArray, Struct


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


INTERACTION_DISCRIMINATOR = account_discriminator("Interaction")
CONTEXT_DISCRIMINATOR = account_discriminator("ContextAccount")
CALLBACK_FROM_LLM_DISCRIMINATOR = instruction_discriminator("callback_from_llm")

PUBKEY = Bytes(32)
BORSH_STRING = PascalString(Int32ul, "utf8")

ACCOUNT_META_LAYOUT = Struct(
    "pubkey" / PUBKEY,
    "is_signer" / Flag,
    "is_writable" / Flag,
)

INTERACTION_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "context" / PUBKEY,
    "user" / PUBKEY,
    "text" / BORSH_STRING,
    "callback_program_id" / PUBKEY,
    "callback_discriminator" / Bytes(8),
    "callback_account_metas" / PrefixedArray(Int32ul, ACCOUNT_META_LAYOUT),
    "is_processed" / Flag,
)

CONTEXT_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "text" / BORSH_STRING,
)


class AccountDecodeError(ValueError):
    """Raised when account data does not match the expected layout."""


def _b58(raw: bytes) -> str:
    return base58.b58encode(raw).decode()


def _parse(layout: Struct, data: bytes, what: str):
    try:
        return layout.parse(data)
    except (ConstructError, UnicodeDecodeError) as exc:
        raise AccountDecodeError(f"invalid {what} account data: {exc}") from exc


@dataclass(frozen=True)
class CallbackAccountMeta:
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class InteractionRecord:
    address: str
    context: str
    user: str
    text: str
    callback_program_id: str
    callback_discriminator: bytes
    callback_account_metas: List[CallbackAccountMeta] = field(default_factory=list)
    is_processed: bool = False

    @classmethod
    def decode(cls, address: str, data: bytes) -> "InteractionRecord":
        # The discriminator is not checked; the feed is already filtered on it.
        parsed = _parse(INTERACTION_LAYOUT, data, "interaction")
        return cls(
            address=address,
            context=_b58(parsed.context),
            user=_b58(parsed.user),
            text=parsed.text,
            callback_program_id=_b58(parsed.callback_program_id),
            callback_discriminator=bytes(parsed.callback_discriminator),
            callback_account_metas=[
                CallbackAccountMeta(
                    pubkey=_b58(meta.pubkey),
                    is_signer=bool(meta.is_signer),
                    is_writable=bool(meta.is_writable),
                )
                for meta in parsed.callback_account_metas
            ],
            is_processed=bool(parsed.is_processed),
        )

    def encode(self) -> bytes:
        return INTERACTION_LAYOUT.build(
            dict(
                discriminator=INTERACTION_DISCRIMINATOR,
                context=base58.b58decode(self.context),
                user=base58.b58decode(self.user),
                text=self.text,
                callback_program_id=base58.b58decode(self.callback_program_id),
                callback_discriminator=self.callback_discriminator,
                callback_account_metas=[
                    dict(
                        pubkey=base58.b58decode(meta.pubkey),
                        is_signer=meta.is_signer,
                        is_writable=meta.is_writable,
                    )
                    for meta in self.callback_account_metas
                ],
                is_processed=self.is_processed,
            )
        )


@dataclass
class ContextRecord:
    address: str
    text: str

    @classmethod
    def decode(cls, address: str, data: bytes) -> "ContextRecord":
        parsed = _parse(CONTEXT_LAYOUT, data, "context")
        return cls(address=address, text=parsed.text)

    def encode(self) -> bytes:
        return CONTEXT_LAYOUT.build(dict(discriminator=CONTEXT_DISCRIMINATOR, text=self.text))


def encode_callback_data(reply: str) -> bytes:
    return CALLBACK_FROM_LLM_DISCRIMINATOR + BORSH_STRING.build(reply)
