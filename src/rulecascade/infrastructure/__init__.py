"""Infrastructure: database layer, configuration, and the propagation scheduler."""

from rulecascade.infrastructure.config import (
    DeactivationPolicy,
    EngineConfig,
    PromotionPolicy,
    load_engine_config,
)
from rulecascade.infrastructure.db import (
    SCHEMA_VERSION,
    create_schema,
    get_meta,
    open_db,
    seed_default_rules,
    set_meta,
)
from rulecascade.infrastructure.scheduler import PropagationScheduler

__all__ = [
    "SCHEMA_VERSION",
    "DeactivationPolicy",
    "EngineConfig",
    "PromotionPolicy",
    "PropagationScheduler",
    "create_schema",
    "get_meta",
    "load_engine_config",
    "open_db",
    "seed_default_rules",
    "set_meta",
]
