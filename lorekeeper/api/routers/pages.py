from fastapi import APIRouter, HTTPException

from lorekeeper.errors import PersistenceError
from lorekeeper.models.pages import PageRecordOut
from lorekeeper.services.crawl.host import get_host

router = APIRouter(tags=["pages"])


@router.get("/pages/{page_id}", response_model=PageRecordOut)
def api_get_page(page_id: int, site: str):
    store = get_host().get_store()
    try:
        record = store.get_page_record(site, page_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if record is None:
        raise HTTPException(status_code=404, detail="Page not found")
    return record.to_dict()
