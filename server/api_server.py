"""FastAPI application entry point: read-only admin view of the mail document worker."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.persistence.DocumentCache import DocumentCache
from shared.persistence.DocumentStore import DocumentStore
from shared.persistence.ThreadStore import ThreadStore
from shared.persistence.WorkQueue import WorkQueue
from server.routers.DocumentsRouter import router as documents_router
from server.routers.StatusRouter import router as status_router
from server.routers.ThreadsRouter import router as threads_router

logging = setup_logging(log_name="api")
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.app_version = app_version
    if not hasattr(app.state, "helper_config"):
        app.state.helper_config = HelperConfig(logger=logging)
    helper_config = app.state.helper_config

    # fail fast when the admin key is not configured
    helper_config.get_string_val("API_SERVER_API_KEY")

    app.state.document_store = DocumentStore(helper_config)
    await app.state.document_store.initialize()
    app.state.document_cache = DocumentCache(helper_config)
    app.state.thread_store = ThreadStore(helper_config)
    app.state.work_queue = WorkQueue(helper_config)
    logging.info("Admin API ready, catalog at %s", app.state.document_store.db_path)

    # while the app is running...
    yield

    # when the app shuts down
    logging.info("Shutting down, closing document store...")
    await app.state.document_store.close()


app = FastAPI(
    title="askdoc_mail_bridge",
    description=(
        "Read-only admin API of the mail document worker: health, queue and cache "
        "status, the catalog of imported documents and the open conversation threads."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.include_router(status_router)
app.include_router(documents_router)
app.include_router(threads_router)


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting askdoc_mail_bridge API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
