import json
import os
import re

from fastapi import APIRouter, HTTPException

from lorekeeper.services.crawl.host import get_host
from lorekeeper.services.crawl.pipeline import read_text

router = APIRouter(tags=["categories"])

_ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


@router.get("/categories/{name}")
def api_get_category_artifact(name: str):
    """Return a discovery artifact, e.g. ``union`` -> categories-union.json."""
    if not _ARTIFACT_NAME.match(name) or name.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid artifact name")
    data_dir = get_host().crawler_config.resolved_data_directory()
    path = os.path.join(data_dir, f"categories-{name}.json")
    text = read_text(path)
    if text is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return {"name": name, "path": path, "data": json.loads(text)}
