import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lorekeeper import __version__
from lorekeeper.db.neo4j_connector import close_driver
from lorekeeper.services.crawl.host import get_host, shutdown_host

# Routers
from lorekeeper.api.routers.crawl import router as crawl_router
from lorekeeper.api.routers.categories import router as categories_router
from lorekeeper.api.routers.pages import router as pages_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the harvest when autostart is on; cancel it and close the driver on shutdown."""
    host = get_host()
    if host.crawler_config.autostart:
        host.start()
        logger.info("harvest autostarted")
    try:
        yield
    finally:
        shutdown_host()
        close_driver()


app = FastAPI(title="LoreKeeper", version=__version__, lifespan=lifespan)

app.include_router(crawl_router)
app.include_router(categories_router)
app.include_router(pages_router)
