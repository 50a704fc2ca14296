DOMAIN = "route_replay"
VERSION = "0.1.0"

# Mean Earth radius used by the haversine distance (metres)
EARTH_RADIUS = 6_371_000

# Recording
DURATION_TICK_INTERVAL = 1.0   # seconds between elapsed-time recomputations
SENSOR_QUEUE_SIZE = 256        # bounded channel between the sensor producer and the controller
DEFAULT_STOP_RATING = 5
MIN_STOP_RATING = 1
MAX_STOP_RATING = 5
ROUTE_TITLE_FORMAT = "Route {date}"

# Playback
PLAYBACK_BASE_INTERVAL = 0.1   # seconds per tick at 1x, divided by the speed multiplier
SPEED_PRESETS = (1, 2, 5)
DEFAULT_SPEED = 1
ACTIVE_STOP_WINDOW = 10        # a stop is active while |cursor - stop index| < window

# Store HTTP requests
REQUEST_TIMEOUT = 5   # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3  # maximum number of retry attempts

# Store tables (PostgREST resource names)
ROUTES_TABLE = "routes"
POINTS_TABLE = "route_points"
STOPS_TABLE = "stops"
STOP_MEDIA_TABLE = "stop_media"
