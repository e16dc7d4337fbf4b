import enum
import json
import logging
from typing import List, Optional, Sequence, Union

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import (
    AccountDecodeError,
    ContextRecord,
    InteractionRecord,
    encode_callback_data,
)
from .llm import ROLE_ASSISTANT, ROLE_USER, ChatMessage, LLMBackend
from .memory import InteractionMemory
from .source import PendingUpdate
from .submitter import TransactionSubmitter
from .transaction import to_pubkey

log = logging.getLogger(__name__)

MAX_API_RETRY_ATTEMPTS = 3
IDENTITY_SEED = b"identity"


class Outcome(enum.Enum):
    DISCARDED = "discarded"
    ALREADY_PROCESSED = "already_processed"
    SUBMITTED = "submitted"
    UNCONFIRMED = "unconfirmed"


class ContextFetchError(Exception):
    def __init__(self, address: str, reason: Exception) -> None:
        super().__init__(f"failed to load context {address}: {reason}")
        self.address = address


def trim_history(history: Sequence[ChatMessage], count: int) -> List[ChatMessage]:
    """Drop up to ``count`` oldest messages, always keeping at least one."""
    if len(history) <= 1:
        return list(history)
    return list(history[min(count, len(history) - 1):])


async def generate_with_retry(
    backend: LLMBackend,
    history: Sequence[ChatMessage],
    max_attempts: int = MAX_API_RETRY_ATTEMPTS,
) -> str:
    working = list(history)
    attempts = 0
    while True:
        try:
            return await backend.generate(working)
        except Exception as exc:
            attempts += 1
            log.warning("API call failed (attempt %d/%d): %s", attempts, max_attempts, exc)
            if attempts >= max_attempts:
                raise
            # shrink the prompt in case the failure was a context-length error
            working = trim_history(working, attempts * 2)


def _quoted(text: str) -> str:
    # quotes, backslashes and control characters are escaped
    return json.dumps(text, ensure_ascii=False)


def build_prompt(context_text: str, request_text: str) -> str:
    return f"With context: {_quoted(context_text)}, respond to: {_quoted(request_text)}"


class InteractionProcessor:
    def __init__(
        self,
        *,
        rpc,
        backend: LLMBackend,
        memory: InteractionMemory,
        submitter: TransactionSubmitter,
        identity: Keypair,
        identity_pda: Union[str, Pubkey],
        program_id: Union[str, Pubkey],
        max_api_attempts: int = MAX_API_RETRY_ATTEMPTS,
    ) -> None:
        self.rpc = rpc
        self.backend = backend
        self.memory = memory
        self.submitter = submitter
        self.identity = identity
        self.identity_pda = to_pubkey(identity_pda)
        self.program_id = to_pubkey(program_id)
        self.max_api_attempts = max_api_attempts

    async def fetch_context(self, address: str) -> ContextRecord:
        try:
            data = await self.rpc.get_account_data(address)
            return ContextRecord.decode(address, data)
        except Exception as exc:
            raise ContextFetchError(address, exc) from exc

    def build_callback_instruction(self, interaction: InteractionRecord, reply: str) -> Instruction:
        accounts = [
            AccountMeta(self.identity.pubkey(), is_signer=True, is_writable=True),
            AccountMeta(self.identity_pda, is_signer=False, is_writable=False),
            AccountMeta(Pubkey.from_string(interaction.address), is_signer=False, is_writable=True),
            AccountMeta(
                Pubkey.from_string(interaction.callback_program_id), is_signer=False, is_writable=False
            ),
        ]
        accounts.extend(
            AccountMeta(
                Pubkey.from_string(meta.pubkey), is_signer=meta.is_signer, is_writable=meta.is_writable
            )
            for meta in interaction.callback_account_metas
        )
        return Instruction(
            program_id=self.program_id,
            accounts=accounts,
            data=encode_callback_data(reply),
        )

    async def process(self, update: PendingUpdate) -> Outcome:
        try:
            interaction = InteractionRecord.decode(update.address, update.data)
        except AccountDecodeError as exc:
            log.debug("ignoring account %s: %s", update.address, exc)
            return Outcome.DISCARDED
        if interaction.is_processed:
            return Outcome.ALREADY_PROCESSED

        log.info("Processing interaction: %s", interaction.address)
        context = await self.fetch_context(interaction.context)
        log.debug("interaction %s text=%r context=%r", interaction.address, interaction.text, context.text)

        history: List[ChatMessage] = self.memory.get_history(interaction.address) or []
        self.memory.add_interaction(interaction.address, interaction.text, ROLE_USER)
        history.append(ChatMessage(ROLE_USER, build_prompt(context.text, interaction.text)))

        reply = await generate_with_retry(self.backend, history, self.max_api_attempts)
        self.memory.add_interaction(interaction.address, reply, ROLE_ASSISTANT)

        instruction = self.build_callback_instruction(interaction, reply)
        signature: Optional[str] = await self.submitter.submit(instruction)
        return Outcome.SUBMITTED if signature else Outcome.UNCONFIRMED
