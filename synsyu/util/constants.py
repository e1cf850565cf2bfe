DEFAULT_CONFIG_FILE = "/etc/synsyu/synsyu.conf"
DEFAULT_MANIFEST_PATH = "/var/lib/synsyu/manifest.json"
DEFAULT_LOGDIR = "/var/log"
DEFAULT_CHECK_PATH = "/"

# Safety margin kept free on top of the transient footprint.
DEFAULT_MIN_FREE_SPACE_BYTES = 1024**3
DEFAULT_DISK_MARGIN_MB = 0

# Exit statuses. Shells only see the low 8 bits of 421 (165).
EXIT_UPDATE_FAILED = 1
EXIT_CONFIG_ERROR = 20
EXIT_INSUFFICIENT_DISK_SPACE = 421
