from pydantic import BaseModel, Field
from typing import Optional, Union, Dict, Any


class PageRecordOut(BaseModel):
    site: str
    page_id: int
    title: str
    revision_id: Optional[Union[int, str]] = Field(None, description="Revision stamped by the wiki at fetch time")
    last_fetched_at: str


class HarvestStatus(BaseModel):
    """Snapshot of the background harvest."""
    state: str = Field(..., description="idle, running, cancelling, cancelled, finished or failed")
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    discovery: Optional[Dict[str, Any]] = None
    crawl: Optional[Dict[str, Any]] = None


class StartRequest(BaseModel):
    discover: Optional[bool] = Field(None, description="Override the discovery enable flag for this run")
    crawl: Optional[bool] = Field(None, description="Override the crawler enable flag for this run")
