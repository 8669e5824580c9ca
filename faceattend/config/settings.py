DESCRIPTOR_LENGTH = 128

# Adaptive learning
MAX_DESCRIPTORS_PER_USER = 20
MIN_CONFIDENCE_TO_LEARN = 0.65
ENROLLMENT_CONFIDENCE = 1.0

# Matching (Euclidean distance)
MATCH_THRESHOLD = 0.45  # per-descriptor "good match", tie-breaker only
ACCEPT_THRESHOLD = 0.40  # ensemble average must be strictly below this
ENSEMBLE_TOP_K = 3
TIE_MARGIN = 0.02

# Tracking
MAX_FACES = 5
CLASSROOM_MAX_FACES = 60
MAX_MISSES = 5
MAX_DISPLACEMENT = 100.0  # pixels between box centres
RECOGNITION_INTERVAL = 1  # recognise every frame
CLASSROOM_RECOGNITION_INTERVAL = 3

# Challenge-response (milliseconds)
CHALLENGE_DURATIONS_MS = {
    "blink": 3000,
    "turnLeft": 2500,
    "turnRight": 2500,
    "smile": 2000,
    "nod": 3000,
}
EAR_CLOSED_THRESHOLD = 0.20
EAR_OPEN_THRESHOLD = 0.25
BLINKS_REQUIRED = 2
HEAD_TURN_RATIO = 0.15
SMILE_PEAK_THRESHOLD = 0.70
SMILE_MEAN_THRESHOLD = 0.40
NOD_MIN_STEP = 5.0

# Passive liveness
LIVENESS_THRESHOLD = 0.6
LIVENESS_HISTORY = 10
LIVENESS_CROP_SIZE = 64
TEXTURE_SPOOF_THRESHOLD = 0.35

# Attendance
DEFAULT_CUTOFF_TIME = "09:00"

# Batch clustering
CLUSTER_SIMILARITY_THRESHOLD = 0.6
CLUSTER_MIN_SIZE = 2
CLUSTER_MERGE_THRESHOLD = 0.8

# Storage
DB_TIMEOUT = 5.0  # seconds to wait on a locked database file
