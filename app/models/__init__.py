from app.models.catalog_item import CatalogItem
from app.models.execution_log import PromptExecutionLog
from app.models.prompt import Prompt

__all__ = [
    "CatalogItem",
    "Prompt",
    "PromptExecutionLog",
]
