"""Shared constants for the mining engine."""

# Difficulty adjustment ratio bounds (per retarget period)
MIN_ADJUSTMENT_RATIO = 0.5
MAX_ADJUSTMENT_RATIO = 2.0

# Submitters above this multiple of the average hash rate get a squared penalty
HASH_RATE_PENALTY_THRESHOLD = 1.5

# Human score range
MIN_HUMAN_SCORE = 0.0
MAX_HUMAN_SCORE = 100.0

# Coefficient of variation -> human score multiplier
HUMAN_SCORE_CV_MULTIPLIER = 200.0

# Fewer timing samples than this and the submitter is assumed human
MIN_TIMING_SAMPLES = 3

# Fraction of the network daily reward a single address may earn (before log scaling)
DAILY_ADDRESS_SHARE = 0.1

# Reward multiplier floor for low human scores
MIN_REWARD_MULTIPLIER = 0.1

# Milliseconds per hour / seconds per day
MS_PER_HOUR = 3_600_000
SECONDS_PER_DAY = 86_400

# Largest 256-bit hash value; a target equal to this accepts any hash
MAX_TARGET = (1 << 256) - 1

# Reconnection backoff (seconds)
BACKOFF_INITIAL_DELAY = 1.0
BACKOFF_MAX_DELAY = 30.0

# Minimum interval between successive getWork calls (seconds)
MIN_POLL_INTERVAL = 5.0

# Maximum hash attempts per work unit per poll cycle (all workers combined)
MAX_ITERATIONS_PER_WORK = 10_000

# How often hash workers check the found/cancel flags (iterations)
HASH_WORKER_CHECK_INTERVAL = 64

# Maximum age of a work unit before shares against it are stale (seconds)
DEFAULT_WORK_MAX_AGE = 120.0

# Maximum nonces remembered per job for duplicate detection
MAX_NONCES_PER_JOB = 100_000

# Maximum size for the outbound session event queue (oldest dropped when full)
EVENT_QUEUE_MAX_SIZE = 1000

# Socket buffer size for reading data (bytes)
SOCKET_READ_BUFFER_SIZE = 8192

# Timeout waiting for a socket to close gracefully (seconds)
DISCONNECT_TIMEOUT = 5.0

# Maximum length for miner-provided strings (addresses)
MAX_ADDRESS_LENGTH = 128

# Maximum number of unique rejection reason categories tracked per session
MAX_REJECTION_REASONS = 50

# A service session counts as active this long after its last accepted share (seconds)
ACTIVE_SESSION_WINDOW = 300.0

# Service sessions with no request for this long are evicted (seconds)
SESSION_IDLE_TIMEOUT = 86_400.0

# How often the service sweeps for idle sessions (seconds)
SESSION_CLEANUP_INTERVAL = 1_800.0
