import asyncio
import logging
from typing import List, Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair

from .transaction import TransactionBuildError, build_signed_transaction

log = logging.getLogger(__name__)

MAX_TX_RETRY_ATTEMPTS = 5
MAX_BLOCKHASH_FAILURES = 20
COMPUTE_UNIT_LIMIT = 300_000
COMPUTE_UNIT_PRICE = 1_000_000


class TransactionSubmitter:
    """Signs and sends an instruction with a compute budget, retrying on failure.

    Only send failures count against ``max_attempts``; failed blockhash
    fetches are bounded separately by ``max_blockhash_failures``. Running out
    of either budget is logged and reported as ``None``, not raised. A
    transaction that cannot be built (e.g. a signer we do not hold) is
    abandoned on the first try.
    """

    def __init__(
        self,
        rpc,
        identity: Keypair,
        *,
        max_attempts: int = MAX_TX_RETRY_ATTEMPTS,
        compute_unit_limit: int = COMPUTE_UNIT_LIMIT,
        compute_unit_price: int = COMPUTE_UNIT_PRICE,
        max_blockhash_failures: int = MAX_BLOCKHASH_FAILURES,
        blockhash_retry_delay: float = 1.0,
    ) -> None:
        self.rpc = rpc
        self.identity = identity
        self.max_attempts = max_attempts
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price
        self.max_blockhash_failures = max_blockhash_failures
        self.blockhash_retry_delay = blockhash_retry_delay

    def budget_instructions(self) -> List[Instruction]:
        return [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(self.compute_unit_price),
        ]

    async def submit(self, instruction: Instruction) -> Optional[str]:
        attempts = 0
        fetch_failures = 0
        while attempts < self.max_attempts:
            try:
                blockhash, last_valid_block_height = await self.rpc.get_latest_blockhash()
            except Exception as exc:
                fetch_failures += 1
                log.warning(
                    "Failed to fetch blockhash (%d/%d): %s",
                    fetch_failures, self.max_blockhash_failures, exc,
                )
                if fetch_failures >= self.max_blockhash_failures:
                    log.error("Giving up on transaction: blockhash unavailable")
                    return None
                await asyncio.sleep(self.blockhash_retry_delay)
                continue

            try:
                tx = build_signed_transaction(
                    [*self.budget_instructions(), instruction], self.identity, blockhash
                )
            except TransactionBuildError as exc:
                log.error("Cannot build transaction: %s", exc)
                return None

            try:
                signature = await self.rpc.send_and_confirm_transaction(
                    tx.raw, last_valid_block_height
                )
            except Exception as exc:
                attempts += 1
                log.error(
                    "Failed to send transaction (attempt %d/%d): %s",
                    attempts, self.max_attempts, exc,
                )
                continue

            log.info("Transaction signature: %s", signature)
            return signature

        log.error("Transaction not confirmed after %d attempts", self.max_attempts)
        return None
