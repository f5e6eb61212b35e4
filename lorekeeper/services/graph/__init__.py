"""Neo4j-backed storage for harvested pages."""
from .pages import GraphPageStore
from .admin import bootstrap_schema, clear_page_data

__all__ = [
    'GraphPageStore',
    'bootstrap_schema', 'clear_page_data',
]
