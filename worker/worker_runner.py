"""Worker entry point.

Answers the mail requests dropped into the queue directory: imports
documents sent with "(add)" and answers questions from the catalog.

Usage:
    python -m worker.worker_runner
"""

import asyncio
import signal

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.mail.MailClientInterface import MailClientInterface
from shared.clients.mail.MailClientManager import MailClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.persistence.ConfigStore import ConfigStore, WhitelistError
from shared.persistence.DocumentCache import DocumentCache
from shared.persistence.DocumentStore import DocumentStore
from shared.persistence.ProcessedLedger import ProcessedLedger
from shared.persistence.ThreadStore import ThreadStore
from shared.persistence.WorkQueue import WorkQueue
from services.importer.ImportService import ImportService
from services.question.CompilerService import CompilerService
from services.question.PreselectionService import PreselectionService
from services.question.QuestionService import QuestionService
from services.question.ReaderService import ReaderService
from services.queue.QueueProcessor import SHUTDOWN_MAX_WAIT_SECONDS, QueueProcessor
from services.routing.FlowRouter import FlowRouter
from services.routing.RequestService import RequestService


def build_processor(
    config: HelperConfig,
    llm_client: LLMClientInterface,
    mail_client: MailClientInterface,
    document_store: DocumentStore,
    document_cache: DocumentCache,
    thread_store: ThreadStore,
    config_store: ConfigStore,
) -> QueueProcessor:
    """Wire the pipelines behind a queue processor."""
    question_service = QuestionService(
        helper_config=config,
        llm_client=llm_client,
        document_store=document_store,
        document_cache=document_cache,
        preselection=PreselectionService(config, llm_client, document_store, config_store),
        reader=ReaderService(config, llm_client, config_store),
        compiler=CompilerService(config, llm_client, config_store),
    )
    request_service = RequestService(
        helper_config=config,
        flow_router=FlowRouter(config, llm_client),
        import_service=ImportService(config, llm_client, document_store, config_store),
        question_service=question_service,
        thread_store=thread_store,
    )
    return QueueProcessor(
        helper_config=config,
        work_queue=WorkQueue(config),
        ledger=ProcessedLedger(config),
        config_store=config_store,
        request_service=request_service,
        mail_client=mail_client,
    )


async def boot_clients(logger, llm_client: LLMClientInterface, mail_client: MailClientInterface) -> bool:
    """Boot both clients and check that their backends answer.

    Returns:
        bool: False if the worker must not start.
    """
    try:
        await llm_client.boot()
        await llm_client.do_healthcheck()
    except Exception as e:
        logger.error("Error booting LLM client %s: %s. Aborting.", llm_client.get_engine_name(), e)
        return False

    try:
        await mail_client.boot()
    except Exception as e:
        logger.error("Error booting mail client %s: %s. Aborting.", mail_client.get_engine_name(), e)
        return False
    if not await mail_client.do_verify():
        logger.error("Mail backend %s is not reachable. Aborting.", mail_client.get_engine_name())
        return False
    return True


async def main() -> None:
    """Start the worker and poll until SIGINT/SIGTERM."""
    logger = setup_logging(log_name="worker")
    config = HelperConfig(logger=logger)
    logger.info("Starting mail document worker...")

    # fatal configuration problems stop the worker before any work is accepted
    try:
        llm_client = LLMClientManager(helper_config=config).get_client()
        mail_client = MailClientManager(helper_config=config).get_client()
    except ValueError as e:
        logger.error("Invalid configuration: %s. Aborting.", e)
        return

    config_store = ConfigStore(config)
    try:
        await config_store.load_whitelist()
    except WhitelistError as e:
        logger.error("%s. Create it from whitelist.json.example. Aborting.", e)
        return

    document_store = DocumentStore(config)
    try:
        if not await boot_clients(logger, llm_client, mail_client):
            return

        await document_store.initialize()
        logger.info("Catalog contains %d document(s)", await document_store.count_documents())

        # cleanup runs once per start, never per cycle
        document_cache = DocumentCache(config)
        logger.info("Running PDF cache cleanup...")
        cleaned = await document_cache.run_cleanup(llm_client.do_delete_file)
        stats = await document_cache.get_stats()
        logger.info(
            "Cache cleanup: %d expired, %d cached (%.1f KB)",
            cleaned, stats.entry_count, stats.total_size_bytes / 1024, color="green",
        )

        thread_store = ThreadStore(config)
        logger.info("Running thread cleanup...")
        removed = await thread_store.run_cleanup()
        logger.info("Thread cleanup: %d expired thread(s) removed", removed, color="green")

        processor = build_processor(config, llm_client, mail_client, document_store, document_cache, thread_store, config_store)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, processor.request_shutdown)

        await processor.start()
        logger.info("Worker ready, processing mail...", color="green")
        await processor.run_forever()

        await processor.wait_idle(SHUTDOWN_MAX_WAIT_SECONDS)
        logger.info("Shutdown complete")
    finally:
        await llm_client.close()
        await mail_client.close()
        await document_store.close()


if __name__ == "__main__":
    asyncio.run(main())
