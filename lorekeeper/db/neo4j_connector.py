from typing import Optional

from lorekeeper.config import StorageConfig, load_storage_config

try:
    from neo4j import GraphDatabase
except Exception as _import_exc:
    GraphDatabase = None
    _neo4j_import_exc = _import_exc

_driver = None


def _ensure_neo4j_available():
    if GraphDatabase is None:
        raise RuntimeError(
            "The 'neo4j' Python package is not installed.\n"
            "Install dependencies with: pip install -e .\n"
            f"Import error: {_neo4j_import_exc!r}"
        )


def get_driver(config: Optional[StorageConfig] = None):
    """Return the shared Neo4j driver, creating it on first use."""
    global _driver
    _ensure_neo4j_available()
    if _driver is None:
        cfg = config or load_storage_config()
        if not cfg.neo4j_password:
            raise RuntimeError(
                "NEO4J_PASSWORD is not set.\n"
                "Define NEO4J_URI, NEO4J_USER and NEO4J_PASSWORD in your environment or in a .env file at the project root."
            )
        try:
            _driver = GraphDatabase.driver(cfg.neo4j_uri, auth=(cfg.neo4j_user, cfg.neo4j_password))
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create Neo4j driver for URI '{cfg.neo4j_uri}'. Check that the database is running and the credentials are correct.\nError: {exc}"
            ) from exc
    return _driver


def close_driver():
    global _driver
    if _driver is not None:
        _driver.close()
        _driver = None


def run_cypher(query: str, parameters: dict = None):
    """Run a Cypher statement in its own session and return the records as dicts.

    Each call is a single auto-commit transaction, so every upsert is atomic.
    """
    driver = get_driver()
    with driver.session() as session:
        result = session.run(query, parameters or {})
        return [record.data() for record in result]
