from .core import RefCache, cache_file_name

__all__ = ["RefCache", "cache_file_name"]
