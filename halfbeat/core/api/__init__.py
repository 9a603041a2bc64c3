from halfbeat.core.api.base import BaseAPIClient
from halfbeat.core.api.bilibili import BilibiliClient, normalize_bili_pic

__all__ = [
    "BaseAPIClient",
    "BilibiliClient",
    "normalize_bili_pic",
]
