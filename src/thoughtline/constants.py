"""Shared defaults for thoughtline.

Every primitive accepts keyword overrides for these values.
"""

# Temperature presets
TEMPERATURE_DETERMINISTIC = 0.1
TEMPERATURE_ANALYTICAL = 0.3
TEMPERATURE_CREATIVE = 0.8

DEFAULT_REASONING_TEMPERATURE = TEMPERATURE_DETERMINISTIC
DEFAULT_INTROSPECTION_TEMPERATURE = TEMPERATURE_CREATIVE

# Introspection is opt-in per primitive
DEFAULT_INTROSPECTION = False

# Session trimming
DEFAULT_TRUNCATE_KEEP_FIRST = 1  # usually the system prompt
DEFAULT_TRUNCATE_KEEP_LAST = 10

# Semantic search
DEFAULT_SEEK_LIMIT = 10
DEFAULT_SURVEY_LIMIT = 5
SURVEY_CONTENT_PREVIEW = 200

# Amplify
DEFAULT_MAX_ITERATIONS = 3

# Embeddings
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"

# CLI
DB_PATH_ENV = "THOUGHTLINE_DB"
DEFAULT_DB_PATH = ".thoughtline/thoughts.db"
