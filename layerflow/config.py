"""
Runtime settings read from the environment.
"""

import os

# Shape used for Input layers whose own parameters do not yield one
DEFAULT_INPUT_SHAPE = os.environ.get("LAYERFLOW_DEFAULT_INPUT_SHAPE", "(28, 28, 1)")

# Quiet period before a burst of editor mutations triggers one recomputation
DEBOUNCE_SECONDS = int(os.environ.get("LAYERFLOW_DEBOUNCE_MS", "100")) / 1000.0

# Repetition counts at or above this are emitted as a loop instead of copies
REPEAT_LOOP_THRESHOLD = int(os.environ.get("LAYERFLOW_REPEAT_LOOP_THRESHOLD", "5"))

# Number of log records kept for clients that connect late
LOG_HISTORY = int(os.environ.get("LAYERFLOW_LOG_HISTORY", "100"))
