"""Oracle identity handling and legacy transaction assembly on top of solders."""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import base58
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


class TransactionBuildError(ValueError):
    pass


@dataclass(frozen=True)
class SignedTransaction:
    raw: bytes
    signature: str


def to_pubkey(address: Union[str, Pubkey]) -> Pubkey:
    if isinstance(address, Pubkey):
        return address
    return Pubkey.from_string(address)


def load_keypair(secret: str) -> Keypair:
    """Parse a base58 secret: a 32 byte seed or a 64 byte seed + public key."""
    try:
        raw = base58.b58decode(secret.strip())
    except ValueError as exc:
        raise ValueError(f"secret is not valid base58: {exc}") from None
    if len(raw) not in (32, 64):
        raise ValueError(f"expected a 32 or 64 byte secret, got {len(raw)} bytes")
    keypair = Keypair.from_seed(raw[:32])
    if len(raw) == 64 and bytes(keypair.pubkey()) != raw[32:]:
        raise ValueError("secret key does not match its public key")
    return keypair


def find_program_address(seeds: Iterable[bytes], program_id: Union[str, Pubkey]) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(list(seeds), to_pubkey(program_id))


def build_signed_transaction(
    instructions: Sequence[Instruction],
    payer: Keypair,
    recent_blockhash: str,
    signers: Optional[Sequence[Keypair]] = None,
) -> SignedTransaction:
    message = Message.new_with_blockhash(
        list(instructions), payer.pubkey(), Hash.from_string(recent_blockhash)
    )
    required: List[Pubkey] = list(message.account_keys[: message.header.num_required_signatures])
    by_key = {kp.pubkey(): kp for kp in [payer, *(signers or [])]}
    missing = [str(key) for key in required if key not in by_key]
    if missing:
        raise TransactionBuildError(f"missing signer for {', '.join(missing)}")
    tx = Transaction([by_key[key] for key in required], message, message.recent_blockhash)
    return SignedTransaction(raw=bytes(tx), signature=str(tx.signatures[0]))
