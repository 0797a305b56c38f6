# config.py
import os

# ======= Worker pool =======
# 0 means "one worker per CPU".
WORKERS             = int(os.getenv("BC_WORKERS", "0"))
START_METHOD        = os.getenv("BC_START_METHOD", "spawn")
MAX_WORKER_RESTARTS = int(os.getenv("BC_MAX_WORKER_RESTARTS", "2"))

# ======= Search behaviour =======
MODE                 = os.getenv("BC_MODE", "all")            # first | all
CANONICALIZE         = int(os.getenv("BC_CANONICALIZE", "1")) != 0
ENGINE               = os.getenv("BC_ENGINE", "backtrack")    # backtrack | cp-sat
ALLOW_REFLECTIONS    = int(os.getenv("BC_ALLOW_REFLECTIONS", "0")) != 0

# Cancellation / deadline / node-limit checks happen every N search nodes.
CANCEL_POLL_INTERVAL = int(os.getenv("BC_CANCEL_POLL_INTERVAL", "64"))

# ======= Search guards (0 disables) =======
NODE_LIMIT  = int(os.getenv("BC_NODE_LIMIT", "0"))
MAX_SECONDS = float(os.getenv("BC_MAX_SECONDS", "0"))

# Targets up to this many cells fit the fixed-width bitmask bound.
BITMASK_MAX_CELLS = int(os.getenv("BC_BITMASK_MAX_CELLS", "128"))

# ======= CP-SAT engine =======
CP_SAT_MAX_SECONDS = float(os.getenv("BC_CP_SAT_MAX_SECONDS", "60"))
CP_SAT_WORKERS     = int(os.getenv("BC_CP_SAT_WORKERS", "1"))

# ======= Output names =======
SOLUTIONS_OUT  = os.getenv("BC_SOLUTIONS_OUT", "solutions.txt")
SOLUTIONS_JSON = os.getenv("BC_SOLUTIONS_JSON", "solutions.json")
COLOR_OUTPUT   = int(os.getenv("BC_COLOR_OUTPUT", "1")) != 0


def resolved_workers(requested=None) -> int:
    """Return a positive worker count, expanding 0/None to the CPU count."""
    try:
        n = int(requested if requested is not None else CFG.WORKERS)
    except (TypeError, ValueError):
        n = 0
    if n <= 0:
        n = os.cpu_count() or 1
    return max(1, n)


class CFG:
    WORKERS             = WORKERS
    START_METHOD        = START_METHOD
    MAX_WORKER_RESTARTS = MAX_WORKER_RESTARTS

    MODE              = MODE
    CANONICALIZE      = CANONICALIZE
    ENGINE            = ENGINE
    ALLOW_REFLECTIONS = ALLOW_REFLECTIONS

    CANCEL_POLL_INTERVAL = CANCEL_POLL_INTERVAL
    NODE_LIMIT           = NODE_LIMIT
    MAX_SECONDS          = MAX_SECONDS
    BITMASK_MAX_CELLS    = BITMASK_MAX_CELLS

    CP_SAT_MAX_SECONDS = CP_SAT_MAX_SECONDS
    CP_SAT_WORKERS     = CP_SAT_WORKERS

    SOLUTIONS_OUT  = SOLUTIONS_OUT
    SOLUTIONS_JSON = SOLUTIONS_JSON
    COLOR_OUTPUT   = COLOR_OUTPUT


__all__ = ["CFG", "resolved_workers"]
