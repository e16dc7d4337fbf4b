from __future__ import annotations

import base58
import pytest
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from fakes import pk
from llm_oracle.transaction import (
    COMPUTE_BUDGET_PROGRAM_ID,
    TransactionBuildError,
    build_signed_transaction,
    find_program_address,
    load_keypair,
)


def test_keypair_loads_from_full_secret_and_seed():
    kp = Keypair()
    full = base58.b58encode(bytes(kp)).decode()
    seed = base58.b58encode(bytes(kp)[:32]).decode()
    assert load_keypair(full).pubkey() == kp.pubkey()
    assert load_keypair(f"  {seed}\n").pubkey() == kp.pubkey()


@pytest.mark.parametrize("secret", ["not-base58-0OIl", base58.b58encode(b"\x01" * 31).decode()])
def test_keypair_rejects_malformed_secret(secret):
    with pytest.raises(ValueError):
        load_keypair(secret)


def test_keypair_rejects_mismatched_secret():
    a, b = Keypair(), Keypair()
    raw = bytes(a)[:32] + bytes(b.pubkey())
    with pytest.raises(ValueError):
        load_keypair(base58.b58encode(raw).decode())


def test_find_program_address_is_deterministic_and_off_curve():
    program_id = "LLMrieZMpbJFwN52WgmBNMxYojrpRVYXdC1RCweEbab"
    address, bump = find_program_address([b"identity"], program_id)
    assert (address, bump) == find_program_address([b"identity"], Pubkey.from_string(program_id))
    assert 0 <= bump <= 255
    assert not address.is_on_curve()


def test_signed_transaction_verifies_and_orders_instructions():
    payer = Keypair()
    ixs = [
        set_compute_unit_limit(300_000),
        set_compute_unit_price(1_000_000),
        Instruction(
            Pubkey.from_string(pk(9)),
            b"x",
            [
                AccountMeta(Pubkey.from_string(pk(5)), is_signer=False, is_writable=False),
                AccountMeta(payer.pubkey(), is_signer=True, is_writable=True),
            ],
        ),
    ]
    signed = build_signed_transaction(ixs, payer, pk(7))

    tx = Transaction.from_bytes(signed.raw)
    tx.verify()
    assert str(tx.signatures[0]) == signed.signature
    message = tx.message
    assert message.header.num_required_signatures == 1
    assert message.account_keys[0] == payer.pubkey()
    assert str(message.recent_blockhash) == pk(7)
    programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]
    assert programs == [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID, Pubkey.from_string(pk(9))]
    assert bytes(message.instructions[2].data) == b"x"


def test_missing_extra_signer_is_a_build_error():
    payer = Keypair()
    ix = Instruction(
        Pubkey.from_string(pk(9)),
        b"",
        [AccountMeta(Pubkey.from_string(pk(3)), is_signer=True, is_writable=False)],
    )
    with pytest.raises(TransactionBuildError):
        build_signed_transaction([ix], payer, pk(7))


def test_extra_signer_is_used_when_supplied():
    payer, other = Keypair(), Keypair()
    ix = Instruction(
        Pubkey.from_string(pk(9)),
        b"",
        [AccountMeta(other.pubkey(), is_signer=True, is_writable=False)],
    )
    tx = Transaction.from_bytes(build_signed_transaction([ix], payer, pk(7), [other]).raw)
    tx.verify()
    assert len(tx.signatures) == 2
