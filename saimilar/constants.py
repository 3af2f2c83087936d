"""Application constants - centralized configuration values."""

# =============================================================================
# Conversation
# =============================================================================
HISTORY_TURNS_FOR_ANALYSIS = 6
QUERY_EXCERPT_LENGTH = 100
GREETING_TURN_ID = "init"

# =============================================================================
# Limits
# =============================================================================
MAX_USAGE_LOG_ENTRIES = 1000
MAX_RESULTS_PER_LOOKUP = 10
MAX_CAST_MEMBERS = 5

# =============================================================================
# LLM request defaults
# =============================================================================
LLM_TEMPERATURE = 0.7
LLM_MAX_TOKENS = 3000

# =============================================================================
# Parallel test harness
# =============================================================================
TEST_HARNESS_DELAY = 0.5  # seconds between successive model calls

# =============================================================================
# Rating
# =============================================================================
RATING_MIN = 1
RATING_MAX = 10

# =============================================================================
# Random discovery
# =============================================================================
RANDOM_DISCOVER_MAX_PAGE = 20
RANDOM_DISCOVER_MIN_VOTES = 200
RANDOM_DISCOVER_MIN_AVERAGE = 6

# =============================================================================
# API Timeouts (in seconds)
# =============================================================================
API_TIMEOUT_LLM = 60.0
HTTPX_TIMEOUT = 10.0

# =============================================================================
# Session & Security
# =============================================================================
SESSION_TIMEOUT_DAYS = 7
SESSION_COOKIE_NAME = "saimilar_session"

# In-memory chat sessions: evicted after this much inactivity, or oldest-first past the cap
CHAT_SESSION_IDLE_SECONDS = 2 * 60 * 60
MAX_CHAT_SESSIONS = 500

# =============================================================================
# Media Types
# =============================================================================
TMDB_GENRE_ANIMATION = 16
ANIME_ORIGINAL_LANGUAGE = "ja"

# =============================================================================
# External API URLs
# =============================================================================
TMDB_API_BASE_URL = "https://api.themoviedb.org/3"
