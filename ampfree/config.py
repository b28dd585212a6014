"""Configuration constants for ampfree."""

import os

# Upstream service every request is forwarded to
DEFAULT_UPSTREAM = "https://ampcode.com"

# Default proxy port
DEFAULT_PROXY_PORT = 8318
DEFAULT_LISTEN_HOST = "0.0.0.0"

# Optional YAML config, relative to the working directory
DEFAULT_CONFIG_PATH = "config.yaml"

# Internal API calls whose free-tier flag gets flipped
INTERNAL_API_PATH = "/api/internal"
WEB_SEARCH_QUERY = "webSearch2"
EXTRACT_WEB_PAGE_CONTENT_QUERY = "extractWebPageContent"
FREE_TIER_QUERIES = frozenset({WEB_SEARCH_QUERY, EXTRACT_WEB_PAGE_CONTENT_QUERY})

# Provider endpoint whose model gets remapped
ANTHROPIC_MESSAGES_PATH = "/api/provider/anthropic/v1/messages"

# Header added when a model mapping was applied
AMP_MODE_HEADER = "X-Amp-Mode"
AMP_MODE_FREE = "free"

DEBUG_MODE = os.environ.get("AMPFREE_DEBUG", "false").lower() == "true"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
