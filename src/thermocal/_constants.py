"""Internal constants shared across the library."""

COMMAND_SUFFIX = "/set"
STORE_PREFIX = "thermoCal_"
COMMAND_PAYLOAD_KEY = "local_temperature_calibration"

DEFAULT_STEP = 0.2
DEFAULT_HYSTERESIS = 0.6
DEFAULT_COOLDOWN_MS = 5_000
DEFAULT_RATE_LIMIT = 4
DEFAULT_RATE_WINDOW_MS = 15 * 60 * 1000

MS_PER_MINUTE = 60_000

# ------------------------------------------------------------------
# Time decay tiers  (max age in minutes, weight)
# ------------------------------------------------------------------

DEFAULT_DECAY_POINTS: tuple[tuple[float, float], ...] = (
    (5.0, 1.0),  # fresh
    (14.0, 0.8),  # normal
    (22.0, 0.4),  # old
    (30.0, 0.1),  # very old; anything older is ignored
)

# ------------------------------------------------------------------
# Discovery rules  (pattern, kind, base weight)
# Checked in order, first match wins.
# ------------------------------------------------------------------

DEFAULT_DISCOVERY_RULES: tuple[tuple[str, str, float], ...] = (
    # "sensor.temp_office_2" -> office, secondary sensor
    (r"sensor\.temp_(.*)_2", "sensor", 0.5),
    # "sensor.temp_office" -> office
    (r"sensor\.temp_(.*)", "sensor", 1.0),
    (r"zigbee2mqtt/thermostat_(.*)", "thermostat", 1.0),
    # legacy generic fallback
    (r"zigbee2mqtt/temp_(.*)", "sensor", 1.0),
)

# ------------------------------------------------------------------
# Plausible payload ranges (°C); readings outside are data-quality failures
# ------------------------------------------------------------------

MIN_PLAUSIBLE_TEMPERATURE = -100.0
MAX_PLAUSIBLE_TEMPERATURE = 200.0
MAX_PLAUSIBLE_CALIBRATION = 100.0
