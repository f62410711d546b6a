"""Internal constants shared across the library."""

#: Seconds an idle (GRACEFUL) or any (FORCE) vault keeps its entries.
DEFAULT_CACHE_TIME: float = 3 * 60

#: Total refresh attempts, first call included.
DEFAULT_MAX_RETRY_CALL: int = 2

#: Prefix for configuration environment variables.
ENV_PREFIX = "REACTIVE_MODELS_"

USER_AGENT = "reactive-models/aiohttp"
