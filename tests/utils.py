"""
A stand-in for the service manager, so that reconciliation can be tested without systemd.

`FakeManager` keeps a table of units and implements the same methods as
`sysunit.plumbing.systemd.Connection`.  Every call is recorded in `calls` as a `(verb, unit,
thread)` tuple, so tests can assert on what was asked of the manager and by whom.  Jobs complete on
a background thread, optionally after a delay, blocked on an event, or never at all.

`memory_session` provides a state store in SQLite memory for tests of the lifecycle driver.
"""

from concurrent.futures import Future
import threading
import time
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sysunit.database import init_db
from sysunit.errors import ManagerError
from sysunit.plumbing import states
from sysunit.plumbing.systemd import Job, JOB_DONE, JobResult, UnitStatus
from sysunit.provider import Provider


Call = Tuple[str, str, str]

ACTIONS = ("enable", "disable", "mask", "unmask", "start", "stop", "restart")


class FakeUnit:

    def __init__(self, unit_file_state: str = states.DISABLED, active: bool = False,
                 description: str = ""):
        self.unit_file_state = unit_file_state
        self.active = active
        self.description = description
        self.unmasked_state = states.DISABLED

    @property
    def load_state(self) -> str:
        return states.MASKED if states.is_masked(self.unit_file_state) else states.LOADED


class FakeManager:

    def __init__(self, delay: float = 0):
        self.units: Dict[str, FakeUnit] = {}
        self.calls: List[Call] = []
        self.delay = delay
        self.job_results: Dict[str, str] = {}
        self.refuse: Set[Tuple[str, str]] = set()
        self.blocks: Dict[str, threading.Event] = {}
        self.hung: Set[str] = set()
        self.closed = 0
        self._lock = threading.Lock()

    def add(self, name: str, unit_file_state: str = states.DISABLED,
            active: bool = False) -> FakeUnit:
        unit = self.units[name] = FakeUnit(unit_file_state, active, "Test unit {}".format(name))
        return unit

    def _record(self, verb: str, name: str = "") -> None:
        with self._lock:
            self.calls.append((verb, name, threading.current_thread().name))
        if (verb, name) in self.refuse:
            raise ManagerError("Access denied", 1)

    def actions(self, name: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        List the state-changing calls made so far, optionally for one unit only.
        """
        with self._lock:
            return [(verb, unit) for verb, unit, _ in self.calls
                    if verb in ACTIONS and (name is None or unit == name)]

    def _get(self, name: str) -> FakeUnit:
        try:
            return self.units[name]
        except KeyError:
            raise ManagerError("Unit {} not found.".format(name), 5)

    def ping(self) -> None:
        self._record("ping")

    def close(self) -> None:
        self.closed += 1

    def reload(self) -> None:
        self._record("reload")

    def list_by_names(self, names):
        self._record("list", ",".join(names))
        statuses = []
        for name in names:
            unit = self.units.get(name)
            if unit is None:
                statuses.append(UnitStatus(name, "", states.NOT_FOUND, states.INACTIVE,
                                           states.DEAD, "", 0, ""))
            else:
                active = states.ACTIVE if unit.active else states.INACTIVE
                sub = states.RUNNING if unit.active else states.DEAD
                statuses.append(UnitStatus(name, unit.description, unit.load_state, active, sub,
                                           "", 0, ""))
        return statuses

    def get_unit_file_state(self, name: str) -> str:
        self._record("file-state", name)
        unit = self.units.get(name)
        return unit.unit_file_state if unit else ""

    def enable(self, name: str, runtime: bool = False, force: bool = True):
        self._record("enable", name)
        unit = self._get(name)
        if states.is_masked(unit.unit_file_state):
            raise ManagerError("Unit file {} is masked.".format(name), 1)
        unit.unit_file_state = states.ENABLED
        return (True, ["Created symlink /etc/systemd/system/multi-user.target.wants/{}".format(name)])

    def disable(self, name: str, runtime: bool = False):
        self._record("disable", name)
        self._get(name).unit_file_state = states.DISABLED
        return ["Removed /etc/systemd/system/multi-user.target.wants/{}".format(name)]

    def mask(self, name: str, runtime: bool = False, force: bool = True):
        self._record("mask", name)
        unit = self._get(name)
        if not states.is_masked(unit.unit_file_state):
            unit.unmasked_state = unit.unit_file_state
        unit.unit_file_state = states.MASKED_RUNTIME if runtime else states.MASKED
        return ["Created symlink /etc/systemd/system/{} -> /dev/null".format(name)]

    def unmask(self, name: str, runtime: bool = False):
        self._record("unmask", name)
        unit = self._get(name)
        if states.is_masked(unit.unit_file_state):
            unit.unit_file_state = unit.unmasked_state
        return ["Removed /etc/systemd/system/{}".format(name)]

    def _submit(self, verb: str, name: str, mode: str) -> Job:
        self._record(verb, name)
        unit = self._get(name)
        if verb != "stop" and states.is_masked(unit.unit_file_state):
            raise ManagerError("Unit {} is masked.".format(name), 1)
        future: "Future[JobResult]" = Future()
        if name in self.hung:
            return Job(name, verb, future)

        def run():
            event = self.blocks.get(name)
            if event:
                event.wait()
            if self.delay:
                time.sleep(self.delay)
            result = self.job_results.get(name, JOB_DONE)
            if result == JOB_DONE:
                unit.active = verb != "stop"
            future.set_result(JobResult(result))

        threading.Thread(target=run, name="fake-job", daemon=True).start()
        return Job(name, verb, future)

    def start(self, name: str, mode: str = "replace") -> Job:
        return self._submit("start", name, mode)

    def stop(self, name: str, mode: str = "replace") -> Job:
        return self._submit("stop", name, mode)

    def restart(self, name: str, mode: str = "replace") -> Job:
        return self._submit("restart", name, mode)


def fake_provider(manager: FakeManager, **kwargs) -> Provider:
    """
    Create a provider whose connections all lead to the given fake manager.
    """
    return Provider(connect=lambda scope: manager, **kwargs)


def memory_session() -> sessionmaker:
    """
    Create a session factory for a fresh in-memory state store.
    """
    engine = create_engine("sqlite://", poolclass=StaticPool,
                           connect_args={"check_same_thread": False})
    init_db(engine)
    return sessionmaker(bind=engine)
