from src.core.cache.service import CacheKey, SummaryCache, get_summary_cache, summary_cache

__all__ = ["CacheKey", "SummaryCache", "get_summary_cache", "summary_cache"]
