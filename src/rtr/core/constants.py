"""Platform constants shared by the coordinator, the fetcher and the run manager.

The query limits below are the defaults for `QueryLimits`; they can be
overridden through settings.
"""

# Tooling API query char limit is 100,000 after v48; REST API limit for
# uri + headers is 16,348 bytes. Local testing shows the effective query
# char limit to be closer to ~12,400.
QUERY_CHAR_LIMIT = 12400

# Max ids rendered into a single IN (...) clause
QUERY_RECORD_LIMIT = 500

# Placeholder substituted by the query chunker
ID_PLACEHOLDER = "{ids}"

# Run ids
TEST_RUN_ID_PREFIX = "707"
CLASS_ID_PREFIX = "01p"
COMPACT_ID_LENGTH = 15
EXTENDED_ID_LENGTH = 18
# Compact and extended ids of the same run share this many leading characters
ID_MATCH_PREFIX_LENGTH = 14

# Push channel and protocol
TEST_RESULT_CHANNEL = "/systemTopic/TestResult"
HANDSHAKE_CHANNEL = "/meta/handshake"
AUTH_INVALID_ERROR = "401::Authentication invalid"
UNKNOWN_CLIENT_ERROR = "403::Unknown client"
RECONNECT_HANDSHAKE_ADVICE = "handshake"
TRANSPORT_UP_EVENT = "transport:up"
TRANSPORT_DOWN_EVENT = "transport:down"

# Timing (seconds)
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_WAIT_TIMEOUT = 4 * 60 * 60
DEFAULT_STREAMING_API_VERSION = "36.0"
DEFAULT_API_VERSION = "58.0"
