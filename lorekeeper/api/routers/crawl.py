from typing import Optional

from fastapi import APIRouter, HTTPException

from lorekeeper.models.pages import HarvestStatus, StartRequest
from lorekeeper.services.crawl.host import get_host

router = APIRouter(prefix="/crawl", tags=["crawl"])


@router.get("/status", response_model=HarvestStatus)
def api_crawl_status():
    return get_host().status()


@router.post("/start", status_code=202, response_model=HarvestStatus)
def api_crawl_start(payload: Optional[StartRequest] = None):
    host = get_host()
    opts = payload or StartRequest()
    if not host.start(discover=opts.discover, crawl=opts.crawl):
        raise HTTPException(status_code=409, detail="A harvest is already running")
    return host.status()


@router.post("/cancel", response_model=HarvestStatus)
def api_crawl_cancel(timeout: float = 30.0):
    host = get_host()
    host.cancel(timeout)
    return host.status()
