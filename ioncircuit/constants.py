from __future__ import annotations

# ==============================================================================
# Observation / Action Contract
# ==============================================================================

# Full observation vector shared with the training client. Never change the
# length or the field order without bumping the client.
OBS_DIM = 16

# Simplified observation for the secondary agent type (pos x2, vel x2, health).
LEGACY_OBS_DIM = 5

# [throttle, steer, fire]
ACTION_DIM = 3

# Fire component is a flag: "fire if value > 0.5".
FIRE_THRESHOLD = 0.5

# Throttle below this counts as an attempt to reverse.
REVERSE_INTENT_THRESHOLD = -0.1

# ==============================================================================
# Timing
# ==============================================================================

# One fixed simulation tick (seconds).
TICK_DT = 1.0 / 60.0

# Default episode length in ticks.
DEFAULT_STEP_CAP = 2048

# ==============================================================================
# Networking
# ==============================================================================

DEFAULT_PORT = 5556

# Older builds of the secondary agent listened here.
LEGACY_PORT = 5555

# ==============================================================================
# Policies
# ==============================================================================

DEFAULT_POLICY_NAME = "IonCircuitPolicy"

# Published bundles are directories named "<name><suffix>".
POLICY_BUNDLE_SUFFIX = ".policy"
POLICY_FORMAT = "ioncircuit-policy/1"
