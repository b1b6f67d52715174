import logging

from aquaflow.core.logging import configure_logging
from aquaflow.schemas.entities import ServiceConfig

logger = logging.getLogger(__name__)


def run(store=None) -> list[str]:
    """Write default catalog settings for every key the store does not have yet."""
    if store is None:
        from aquaflow.api.deps import get_store
        store = get_store()

    existing = store.read_settings()
    missing = {k: v for k, v in ServiceConfig.defaults().to_settings().items() if k not in existing}
    if not missing:
        logger.info("[seed] settings already present, nothing to do")
        return []
    store.merge_settings(missing)
    logger.info("[seed] wrote default settings: %s", ", ".join(sorted(missing)))
    return sorted(missing)


if __name__ == "__main__":
    configure_logging()
    run()
