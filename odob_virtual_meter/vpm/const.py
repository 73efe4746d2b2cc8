"""Constants and defaults for the oDoB Virtual Power Meter."""

# Polling
DEFAULT_POLL_DELAY = 0.9  # seconds between fetches of one source
DEFAULT_TIMEOUT_THRESHOLD = 10  # consecutive failed fetches before giving up
DEFAULT_TIMEOUT_NETWORK = 1.0  # minutes without any completed fetch -> fatal
ONE_MINUTE = 60.0  # seconds
HTTP_REQUEST_TIMEOUT = 10  # seconds

# Allocation
DEFAULT_TARGET_GRID_CONSUMPTION = 0  # Watts, positive = import from grid
DEFAULT_SPLIT_THRESHOLD = 115.0  # Watts, below this only controller 0 works
DEFAULT_SPLIT_WEIGHTS = (0.412, 0.588)
WEIGHT_TOLERANCE = 1e-6

# Set/get mismatch compensation
SETTLING_SECONDS = 3.0  # time for the limit/power gap to become constant
MISMATCH_LIMIT = 250  # Watts, bound on the correction

# Controller livedata API (openDTU-onBattery)
CONTROLLER_STATUS_URL = "http://{}/api/livedata/status?inv={}"
CONTROLLER_POWER_PATH = "inverters/0/AC/0/Power/v"
CONTROLLER_LIMIT_PATH = "inverters/0/limit_absolute"
AUXILIARY_SECTION = "huawei"
AUXILIARY_ENABLED_PATH = "huawei/enabled"
AUXILIARY_POWER_PATH = "huawei/Power/v"

# Net power
DEFAULT_NET_POWER_JSON_PATH = "inverters/0/AC/0/Power/v"
LOCAL_POWER_FIELD = "total_act_power"
SHELLY_EM_COMPONENT = "em:0"

# Readings endpoint
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080
READING_PATH = "/pwr{}"  # 1-based controller number

# MQTT
MQTT_RECONNECT_DELAY = 5  # seconds
DEFAULT_LOCAL_STATUS_TOPIC = "shellypro3em/events/rpc"
VPM_TOPIC_STATUS = "vpm/status"

# Config
OPTIONS_PATH = "/data/options.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
