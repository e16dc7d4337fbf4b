import asyncio
import logging
import signal

from dotenv import load_dotenv

from llm_oracle.config import ConfigError, OracleSettings, build_backend
from llm_oracle.memory import InteractionMemory
from llm_oracle.processor import IDENTITY_SEED, InteractionProcessor
from llm_oracle.source import AccountChangeSource
from llm_oracle.submitter import TransactionSubmitter
from llm_oracle.supervisor import OracleSupervisor
from llm_oracle.transaction import find_program_address, load_keypair
from transports.solana_pubsub import ProgramSubscription
from transports.solana_rpc import SolanaRpcClient

log = logging.getLogger("llm_oracle")


async def main():
    load_dotenv()
    try:
        settings = OracleSettings.from_env()
    except ConfigError as exc:
        raise SystemExit(str(exc))
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    try:
        identity = load_keypair(settings.identity)
    except ValueError as exc:
        raise SystemExit(f"Invalid IDENTITY: {exc}")
    identity_pda, _ = find_program_address([IDENTITY_SEED], settings.program_id)
    backend = build_backend(settings)
    rpc = SolanaRpcClient(settings.rpc_url, commitment="processed")

    log.info("Oracle identity: %s", identity.pubkey())
    log.info("RPC: %s", settings.rpc_url)
    log.info("WS: %s", settings.websocket_url)

    submitter = TransactionSubmitter(
        rpc,
        identity,
        max_attempts=settings.max_tx_attempts,
        compute_unit_limit=settings.compute_unit_limit,
        compute_unit_price=settings.compute_unit_price,
        max_blockhash_failures=settings.max_blockhash_failures,
        blockhash_retry_delay=settings.blockhash_retry_delay,
    )
    processor = InteractionProcessor(
        rpc=rpc,
        backend=backend,
        memory=InteractionMemory(settings.memory_max_entries),
        submitter=submitter,
        identity=identity,
        identity_pda=identity_pda,
        program_id=settings.program_id,
        max_api_attempts=settings.max_api_attempts,
    )
    source = AccountChangeSource(
        rpc,
        lambda program_id, filters: ProgramSubscription(
            settings.websocket_url, program_id, filters=filters
        ),
        settings.program_id,
        capacity=settings.queue_capacity,
    )
    supervisor = OracleSupervisor(source, processor, restart_delay=settings.restart_delay)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    oracle_task = asyncio.create_task(supervisor.run_forever(stop_event))

    await stop_event.wait()
    log.info("Shutting down")

    oracle_task.cancel()
    try:
        await oracle_task
    except asyncio.CancelledError:
        pass

    await rpc.close()
    await backend.close()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
