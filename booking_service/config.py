import os

from seat_engine.config import EngineConfig

def load_engine_config() -> EngineConfig:
    """Engine settings from the environment"""
    defaults = EngineConfig()
    return EngineConfig(
        hold_ttl_minutes=int(os.getenv("HOLD_TTL_MINUTES", defaults.hold_ttl_minutes)),
        max_advance_days=int(os.getenv("MAX_ADVANCE_DAYS", defaults.max_advance_days)),
        max_passengers=int(os.getenv("MAX_PASSENGERS", defaults.max_passengers)),
        availability_cache_size=int(
            os.getenv("AVAILABILITY_CACHE_SIZE", defaults.availability_cache_size)
        ),
    )
