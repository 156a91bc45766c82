import argparse
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from chatrelay import __version__
from chatrelay.api import router as api_router
from chatrelay.manager_singleton import ManagerSingleton

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} {level} {name}: {message}"


def setup_logging(level: str = "INFO"):
    """Replace loguru's default handler with a single stderr sink."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True)


setup_logging(os.getenv("LOG_LEVEL", "INFO"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and graceful shutdown.
    """
    # ====== STARTUP ======
    logger.info("Application Starting Up")
    await ManagerSingleton.initialize()

    config = await ManagerSingleton.get_app_config()
    if config.log_level.upper() != os.getenv("LOG_LEVEL", "INFO").upper():
        setup_logging(config.log_level)
        logger.info(f"Log level set to {config.log_level}")

    try:
        yield
    finally:
        # ====== SHUTDOWN ======
        # aborts pending replies and flushes the last snapshot
        logger.info("Application Shutting Down")
        await ManagerSingleton.close_all()
        logger.info("Graceful shutdown complete.")


app = FastAPI(
    title="ChatRelay API",
    description="Chat sessions with streaming replies from OpenAI-compatible APIs",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="")


@app.get("/")
async def root():
    return {"message": "ChatRelay API is running", "version": __version__}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="ChatRelay API server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8009)
    parser.add_argument("--reload", action="store_true", help="Restart when files under src/ change")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    if args.log_level:
        setup_logging(args.log_level)

    if args.reload:
        uvicorn.run("main:app", host=args.host, port=args.port, reload=True, reload_dirs=["src"], log_level="debug")
    else:
        uvicorn.run(app, host=args.host, port=args.port)
