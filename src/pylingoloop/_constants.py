"""Internal constants shared across the library."""

from __future__ import annotations

USER_AGENT = "pylingoloop"

DEFAULT_LIST_PATH = "/api/audios"
DEFAULT_PAGE_SIZE = 100

# Field on a primary list item that embeds the latest derived job record.
LATEST_RUN_FIELD = "latestRun"

DEFAULT_CACHE_NAMESPACE = "lingoloop"
DEFAULT_CACHE_VERSION = 1

DEFAULT_FEED_NAMESPACE = "public"

# ------------------------------------------------------------------
# Persisted collection names  (key = <namespace>.cache.<name>.v<version>)
# ------------------------------------------------------------------

AUDIO_CACHE_NAME = "audioFiles"
RUN_CACHE_NAME = "transcriptRuns"
USAGE_CACHE_NAME = "usageLogs"
MUTATION_QUEUE_NAME = "pendingMutations"


def cache_key(namespace: str, name: str, version: int) -> str:
    """Build a versioned, namespaced persistence key.

    ``cache_key("lingoloop", "audioFiles", 1)`` -> ``"lingoloop.cache.audioFiles.v1"``
    """
    return f"{namespace}.cache.{name}.v{version}"


def channel_name(namespace: str, kind: str) -> str:
    """Change feed channel name for an entity kind (``public:AudioFile``)."""
    return f"{namespace}:{kind}"
