"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vulngraph.api.routers.chat import router as chat_router
from vulngraph.api.routers.root import router as root_router
from vulngraph.config.settings import get_logging_settings
from vulngraph.graph import graph_store

load_dotenv()

logging.basicConfig(
    level=get_logging_settings().level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    # The driver is created lazily on the first query; close it if it exists.
    graph_store.close_executor()
    _logger.info("application shutdown complete")


app = FastAPI(title="Vulnerability Graph QA", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(root_router)
app.include_router(chat_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
