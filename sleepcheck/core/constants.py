"""Regulatory check intervals, alert signal shapes, and app-level tuning constants."""

# ── CHECK INTERVAL ───────────────────────────────────────────────────────────
# Licensed infant care: a sleeping infant must be visually checked at least once
# every 15 minutes. The countdown is anchored to the most recent start/check.
CHECK_INTERVAL_SECONDS = 900

# Remaining-time marks where an escalating alert burst is fired (3, 2, 1 min).
# Ordered most distant first; that is the order they are crossed in.
ALERT_THRESHOLDS_SECONDS = (180, 120, 60)

# Severity bands derived from seconds remaining.
SEVERITY_WARNING_SECONDS = 180
SEVERITY_URGENT_SECONDS = 60

# ── ALERT SIGNALS ────────────────────────────────────────────────────────────
# Tone: short sine beep with an exponential fade, rendered on demand.
TONE_FREQUENCY_HZ = 800.0
TONE_DURATION_SECONDS = 0.5
TONE_START_GAIN = 0.3
TONE_END_GAIN = 0.01
TONE_SAMPLE_RATE = 22050

# Haptic: on/off milliseconds, 3 pulses.
VIBRATION_PATTERN_MS = [200, 100, 200, 100, 200]

NOTIFICATION_TITLE = "Sleep check due"
NOTIFICATION_ICON = "/icon-192.png"

# ── EVENT FIELDS ─────────────────────────────────────────────────────────────
NOTES_MAX_LENGTH = 500

# ── ANALYTICS / SSE ──────────────────────────────────────────────────────────
ANALYTICS_DEFAULT_DAYS = 7
ANALYTICS_MAX_DAYS = 90

SSE_KEEPALIVE_SECONDS = 30

# Countdown ticker period; one tick per second while any session is open.
COUNTDOWN_TICK_SECONDS = 1
