"""
Attribute bag and diagnostics for a managed unit.

A lifecycle driver hands each reconciliation a `ResourceData`, holding the declared configuration
alongside the attributes persisted by the previous operation, and gets back a list of
`Diagnostic` objects.
"""

from enum import Enum
import logging
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from .errors import ActionFailed
from .plumbing import states
from .plumbing.common import Result
from .plumbing.systemd import SYSTEM, USER, UnitStatus


LOG = logging.getLogger(__name__)

KNOBS = ("enable", "mask", "start")
"""
Tri-state attributes, each either declared true, declared false, or left unset.
"""

CONFIG_KEYS = ("name", "system", "user", "restart_on", "ignore_errors") + KNOBS
"""
Attributes which may be declared by the user.
"""

COMPUTED_KEYS = ("description", "load_state", "active_state", "sub_state", "followed", "job_id",
                 "job_type", "rollback")
"""
Attributes which are only ever set from observed state.
"""


class TriState(Enum):
    """
    Declared value of a knob.  An unset knob follows the rollback snapshot.
    """

    unset = None
    true = True
    false = False

    @classmethod
    def of(cls, value: Optional[bool]) -> "TriState":
        if value is None:
            return cls.unset
        return cls.true if value else cls.false

    @property
    def is_set(self) -> bool:
        return self is not TriState.unset


def _parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.lower() in ("1", "t", "true", "yes"):
            return True
        elif value.lower() in ("0", "f", "false", "no"):
            return False
    return default


class Rollback(NamedTuple):
    """
    State of a unit when it first came under management, restored once management ends.
    """
    existed: bool
    load_state: str = ""
    active_state: str = ""
    sub_state: str = ""
    unit_file_state: str = ""
    active: bool = False
    enabled: bool = False
    masked: bool = False

    @classmethod
    def capture(cls, status: UnitStatus, unit_file_state: Optional[str] = None) -> "Rollback":
        """
        Build a snapshot from a unit's status, and its unit file state if it exists.
        """
        if unit_file_state is None:
            return cls(existed=False, load_state=status.load_state,
                       active_state=status.active_state, sub_state=status.sub_state)
        enabled, _ = states.is_enabled(unit_file_state)
        return cls(existed=True,
                   load_state=status.load_state,
                   active_state=status.active_state,
                   sub_state=status.sub_state,
                   unit_file_state=unit_file_state,
                   active=states.is_active(status.active_state),
                   enabled=enabled,
                   masked=states.is_masked(unit_file_state))

    @classmethod
    def from_attrs(cls, attrs: Mapping[str, str]) -> "Rollback":
        return cls(existed=_parse_bool(attrs.get("existed")),
                   load_state=attrs.get("load_state", ""),
                   active_state=attrs.get("active_state", ""),
                   sub_state=attrs.get("sub_state", ""),
                   unit_file_state=attrs.get("unit_file_state", ""),
                   active=_parse_bool(attrs.get("active")),
                   enabled=_parse_bool(attrs.get("enabled")),
                   masked=_parse_bool(attrs.get("masked")))

    def as_attrs(self) -> Dict[str, str]:
        """
        Flatten to a string map for persisting.
        """
        attrs = {}
        for key, value in self._asdict().items():
            attrs[key] = str(value).lower() if isinstance(value, bool) else value
        return attrs

    @property
    def mask_target(self) -> str:
        """
        Unit file state to restore as far as masking goes.  Units which didn't exist fall back to
        their load state, which is `masked` for masked units.
        """
        return self.unit_file_state or self.load_state


class ResourceData:
    """
    Declared configuration and persisted attributes of one managed unit.

    `config` is `None` when the declaration has been withdrawn (i.e. during deletion).  `state` is
    the set of attributes persisted by the previous operation, if any.  Attributes written by the
    current operation are exposed via `state` once it completes, for the caller to persist.
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None,
                 state: Optional[Mapping[str, Any]] = None):
        self.declared = config is not None
        self.config = dict(config or {})
        self.prior = dict(state or {})
        self._state = dict(self.prior)
        self.applied: Optional[Result[Any]] = None
        """
        Composite result of the actions taken by the last operation, if it got that far.
        """
        if self.config.get("system") and self.config.get("user"):
            raise ValueError("system and user are mutually exclusive")
        if not self.name:
            raise ValueError("A unit name is required")
        previous = self.prior.get("name")
        if self.declared and previous and self.config.get("name", previous) != previous:
            raise ValueError("Unit name cannot be changed from {!r} to {!r}"
                             .format(previous, self.config["name"]))

    def __repr__(self):
        return "<{}: {} ({})>".format(self.__class__.__name__, self.name, self.scope)

    @property
    def name(self) -> str:
        return self.config.get("name") or self.prior.get("name", "")

    @property
    def scope(self) -> str:
        return USER if self.get("user") else SYSTEM

    @property
    def ignore_errors(self) -> bool:
        return bool(self.get("ignore_errors", False))

    @property
    def id(self) -> str:
        """
        Canonical unit name as reported by the manager, empty if the unit was not found.
        """
        return self._state.get("id", "")

    def set_id(self, value: str) -> None:
        self._state["id"] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Fetch an attribute, preferring the declared value where one is given.
        """
        if key in CONFIG_KEYS and self.config.get(key) is not None:
            return self.config[key]
        return self._state.get(key, default)

    def get_tristate(self, key: str) -> TriState:
        if key not in KNOBS:
            raise KeyError(key)
        return TriState.of(self.config.get(key))

    def has_change(self, key: str) -> bool:
        """
        Whether the declared value differs from the one persisted by the previous operation.
        Nothing has changed once the declaration is withdrawn.
        """
        if not self.declared:
            return False
        default = {} if key == "restart_on" else None
        new = self.config.get(key)
        old = self.prior.get(key)
        return (default if new is None else new) != (default if old is None else old)

    def set(self, key: str, value: Any) -> None:
        if key in CONFIG_KEYS and key not in KNOBS:
            raise KeyError("{} can not be set from observed state".format(key))
        self._state[key] = value

    @property
    def rollback(self) -> Optional[Rollback]:
        attrs = self._state.get("rollback")
        return Rollback.from_attrs(attrs) if attrs else None

    def capture_rollback(self, snapshot: Rollback) -> bool:
        """
        Persist a rollback snapshot, unless one is already held.  Returns whether it was stored.
        """
        if self._state.get("rollback"):
            return False
        LOG.debug("Captured rollback for %s: %r", self.name, snapshot)
        self._state["rollback"] = snapshot.as_attrs()
        return True

    @property
    def state(self) -> Dict[str, Any]:
        """
        Attributes to persist after this operation: observed values, plus the declared
        configuration to compare against next time.
        """
        state = dict(self._state)
        state["name"] = self.name
        if self.declared:
            for key in CONFIG_KEYS:
                if key not in KNOBS:
                    state[key] = self.config.get(key)
            state["restart_on"] = dict(self.config.get("restart_on") or {})
        return state


class Severity(Enum):

    error = "error"
    warning = "warning"


class Diagnostic(NamedTuple):
    """
    Problem reported by a reconciliation.  Errors block convergence, warnings are advisory.
    """
    severity: Severity
    summary: str
    detail: str = ""
    error: Optional[Exception] = None

    @classmethod
    def from_error(cls, error: Exception, summary: Optional[str] = None) -> "Diagnostic":
        return cls(Severity.error, summary or str(error), "", error)

    def __str__(self):
        text = "{}: {}".format(self.severity.value, self.summary)
        if self.detail:
            text = "{}\n{}".format(text, self.detail)
        return text


Diagnostics = List[Diagnostic]


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(diag.severity is Severity.error for diag in diagnostics)


def with_severity(diagnostics: Iterable[Diagnostic], ignore_errors: bool) -> Diagnostics:
    """
    Downgrade failed actions to warnings if errors are being ignored.  Returns new diagnostics,
    leaving the originals untouched.  Other failures stay as errors.
    """
    if not ignore_errors:
        return list(diagnostics)
    return [diag._replace(severity=Severity.warning)
            if diag.severity is Severity.error and isinstance(diag.error, ActionFailed) else diag
            for diag in diagnostics]
