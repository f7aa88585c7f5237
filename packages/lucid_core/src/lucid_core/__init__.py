from .config import LucidSettings, lucid_settings
from .schemas.parameter import PaginationParams
from .schemas.response import Page

__all__ = ["LucidSettings", "Page", "PaginationParams", "lucid_settings"]
