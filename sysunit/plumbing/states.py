"""
State strings reported by systemd, and their meaning for reconciliation.

Load states, active states and unit file states are passed around as the raw strings given by the
manager.  The helpers here translate them into the booleans compared against a desired state.
"""

from typing import Tuple


# Unit file states.
ENABLED = "enabled"
ENABLED_RUNTIME = "enabled-runtime"
LINKED = "linked"
LINKED_RUNTIME = "linked-runtime"
MASKED = "masked"
MASKED_RUNTIME = "masked-runtime"
STATIC = "static"
DISABLED = "disabled"
INVALID = "invalid"
ALIAS = "alias"
INDIRECT = "indirect"
GENERATED = "generated"
TRANSIENT = "transient"
BAD = "bad"

# Load states.
LOADED = "loaded"
NOT_FOUND = "not-found"
ERROR = "error"

# Active states.
ACTIVE = "active"
RELOADING = "reloading"
INACTIVE = "inactive"
FAILED = "failed"
ACTIVATING = "activating"
DEACTIVATING = "deactivating"

# Sub states (not exhaustive).
DEAD = "dead"
RUNNING = "running"

IMPLICITLY_ENABLED = frozenset((STATIC, ENABLED_RUNTIME, ALIAS, INDIRECT, GENERATED))
"""
Unit file states which count as enabled without an explicit `[Install]` link.
"""

NOT_ENABLEABLE = frozenset((MASKED, MASKED_RUNTIME, INVALID, BAD, TRANSIENT, ""))
"""
Unit file states which cannot take an enable or disable request.
"""


def is_active(active_state: str) -> bool:
    """
    Whether the unit is running.  Units part-way through a transition are not yet active.
    """
    return active_state in (ACTIVE, RELOADING)


def is_masked(unit_file_state: str) -> bool:
    return unit_file_state in (MASKED, MASKED_RUNTIME)


def is_enabled(unit_file_state: str) -> Tuple[bool, bool]:
    """
    Return a pair of whether the unit counts as enabled, and whether it can be enabled or disabled
    at all.
    """
    if unit_file_state == ENABLED or unit_file_state in IMPLICITLY_ENABLED:
        return (True, True)
    return (False, unit_file_state not in NOT_ENABLEABLE)


def enable_verb(enable: bool) -> str:
    return "enable" if enable else "disable"


def mask_verb(mask: bool) -> str:
    return "mask" if mask else "unmask"


def start_verb(start: bool) -> str:
    return "start" if start else "stop"
