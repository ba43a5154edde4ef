# scripts/clear_cache.py
"""
Empty the configured cache backend (the cache_entries table in production).

    python -m scripts.clear_cache            # everything
    python -m scripts.clear_cache quote:     # one key prefix
"""
import logging
import sys

from config.logging_config import configure_logging
from config.settings import load_settings
from database import create_db_engine, create_session_factory, init_db
from services.cache.cache_backend import build_cache_backend
from services.cache.cache_manager import CacheManager

logger = logging.getLogger(__name__)


def main(argv=None) -> None:
    args = sys.argv[1:] if argv is None else argv
    settings = load_settings()
    configure_logging(settings)
    engine = create_db_engine(settings)
    init_db(engine)
    cache = CacheManager(build_cache_backend(settings, create_session_factory(engine)))
    try:
        if args:
            removed = cache.invalidate_prefix(args[0])
            logger.info("cache cleared backend=%s prefix=%s removed=%d", cache.backend.name, args[0], removed)
        else:
            cache.clear()
            logger.info("cache cleared backend=%s", cache.backend.name)
    finally:
        cache.backend.close()
        engine.dispose()


if __name__ == "__main__":
    main()
