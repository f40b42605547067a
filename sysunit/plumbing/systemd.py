"""
systemd unit queries and control.

The manager is reached through `systemctl`, one process per call.  Start, stop and restart requests
are submitted as jobs which complete asynchronously; callers wait on them with a `Context`.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
import logging
import re
from subprocess import CalledProcessError, CompletedProcess
from typing import Generator, List, NamedTuple, Optional, Sequence, Tuple

from . import states
from .common import command, Result, State, Unset
from ..context import Context
from ..errors import ActionFailed, ConnectionFailed, ManagerError, QueryFailed, ReloadFailed


LOG = logging.getLogger(__name__)

SYSTEM = "system"
USER = "user"
SCOPES = (SYSTEM, USER)

SYSTEMCTL = "/bin/systemctl"

JOB_MODE = "replace"

JOB_DONE = "done"
"""
Result of a job which completed successfully.  Anything else is a failure.
"""

_SHOW_PROPERTIES = ("Id", "Description", "LoadState", "ActiveState", "SubState", "Following", "Job")

_BUS_ERRORS = ("Failed to connect to bus", "Failed to get D-Bus connection",
               "Failed to connect to user scope bus")

_CHANGE_LINE = re.compile(r"^(Created symlink|Removed)\b")


class UnitStatus(NamedTuple):
    """
    Runtime status of a unit, as listed by the manager.
    """
    name: str
    description: str
    load_state: str
    active_state: str
    sub_state: str
    followed: str
    job_id: int
    job_type: str


class JobResult(NamedTuple):
    """
    Outcome of a job: its result, and the manager's explanation if it failed.
    """
    status: str
    message: str = ""


class Job:
    """
    Handle for a start, stop or restart request.  The wrapped future resolves to a `JobResult`,
    whose status is `JOB_DONE` if successful.
    """

    def __init__(self, unit: str, verb: str, future: "Future[JobResult]"):
        self.unit = unit
        self.verb = verb
        self.future = future

    def __repr__(self):
        state = self.future.result().status if self.future.done() else "pending"
        return "<{}: {} {} ({})>".format(self.__class__.__name__, self.verb, self.unit, state)

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> JobResult:
        return self.future.result(timeout)


def _decode(raw: Optional[bytes]) -> str:
    return raw.decode("utf-8", "replace").strip() if raw else ""


def _job_result(message: str) -> str:
    # systemctl only exits non-zero, so recover the job result from its explanation.
    text = message.lower()
    if "canceled" in text or "cancelled" in text:
        return "canceled"
    elif "timed out" in text or "timeout" in text:
        return "timeout"
    elif "dependency" in text:
        return "dependency"
    else:
        return "failed"


def _changes(proc: CompletedProcess) -> List[str]:
    text = "\n".join((_decode(proc.stdout), _decode(proc.stderr)))
    return [line.strip() for line in text.splitlines() if _CHANGE_LINE.match(line.strip())]


def _parse_show(raw: str) -> List[dict]:
    blocks: List[dict] = []
    current: dict = {}
    for line in raw.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current = {}
            continue
        key, _, value = line.partition("=")
        current[key] = value
    if current:
        blocks.append(current)
    return blocks


def _parse_status(name: str, props: dict) -> UnitStatus:
    job_id = 0
    job_type = ""
    job = props.get("Job", "").split()
    if job:
        try:
            job_id = int(job[0])
        except ValueError:
            pass
        if len(job) > 1:
            job_type = job[1]
    return UnitStatus(name=props.get("Id") or name,
                      description=props.get("Description", ""),
                      load_state=props.get("LoadState", ""),
                      active_state=props.get("ActiveState", ""),
                      sub_state=props.get("SubState", ""),
                      followed=props.get("Following", ""),
                      job_id=job_id,
                      job_type=job_type)


class Connection:
    """
    Session with the system or user instance of the service manager.

    Instances are not safe to share between threads; open one per operation, and close it after.
    """

    def __init__(self, scope: str = SYSTEM, systemctl: str = SYSTEMCTL):
        if scope not in SCOPES:
            raise ValueError("scope must be one of: {0}".format(SCOPES))
        self.scope = scope
        self.systemctl = systemctl
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

    def __repr__(self):
        return "<{}: {}{}>".format(self.__class__.__name__, self.scope,
                                   " closed" if self._closed else "")

    def _run(self, args: List[str]) -> CompletedProcess:
        if self._closed:
            raise ConnectionFailed("connection to the {} manager is closed".format(self.scope))
        try:
            return command([self.systemctl, "--{}".format(self.scope)] + args, output=True)
        except FileNotFoundError as ex:
            raise ConnectionFailed("cannot run {}: {}".format(self.systemctl, ex.strerror)) from ex
        except CalledProcessError as ex:
            message = (_decode(ex.stderr) or _decode(ex.stdout)
                       or "exit status {}".format(ex.returncode))
            if any(marker in message for marker in _BUS_ERRORS):
                raise ConnectionFailed(message) from ex
            raise ManagerError(message, ex.returncode) from ex

    def _run_job(self, verb: str, name: str, mode: str) -> JobResult:
        try:
            self._run(["--job-mode={}".format(mode), verb, name])
        except ManagerError as ex:
            LOG.debug("Job %s %s failed: %s", verb, name, ex.message)
            return JobResult(_job_result(ex.message), ex.message)
        return JobResult(JOB_DONE)

    def _submit(self, verb: str, name: str, mode: str) -> Job:
        if self._closed:
            raise ConnectionFailed("connection to the {} manager is closed".format(self.scope))
        if not self._executor:
            self._executor = ThreadPoolExecutor(thread_name_prefix="systemctl-job")
        LOG.debug("Submit job: %s %s (mode: %s)", verb, name, mode)
        return Job(name, verb, self._executor.submit(self._run_job, verb, name, mode))

    def ping(self) -> None:
        self._run(["show", "--property=Version"])

    def close(self) -> None:
        """
        Release the connection.  Jobs already running are left to finish on their own.
        """
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._closed = True

    def reload(self) -> None:
        self._run(["daemon-reload"])

    def list_by_names(self, names: Sequence[str]) -> List[UnitStatus]:
        if not names:
            return []
        proc = self._run(["show", "--property={}".format(",".join(_SHOW_PROPERTIES))]
                         + list(names))
        blocks = _parse_show(_decode(proc.stdout))
        return [_parse_status(name, props) for name, props in zip(names, blocks)]

    def get_unit_file_state(self, name: str) -> str:
        proc = self._run(["show", "--property=UnitFileState", "--value", name])
        return _decode(proc.stdout)

    def enable(self, name: str, runtime: bool = False, force: bool = True) -> Tuple[bool, List[str]]:
        """
        Enable a unit file, returning whether it has install information, and the changes made.
        """
        args = ["enable"]
        if runtime:
            args.append("--runtime")
        if force:
            args.append("--force")
        proc = self._run(args + [name])
        text = "{}\n{}".format(_decode(proc.stdout), _decode(proc.stderr))
        return ("no installation config" not in text, _changes(proc))

    def disable(self, name: str, runtime: bool = False) -> List[str]:
        args = ["disable"]
        if runtime:
            args.append("--runtime")
        return _changes(self._run(args + [name]))

    def mask(self, name: str, runtime: bool = False, force: bool = True) -> List[str]:
        args = ["mask"]
        if runtime:
            args.append("--runtime")
        if force:
            args.append("--force")
        return _changes(self._run(args + [name]))

    def unmask(self, name: str, runtime: bool = False) -> List[str]:
        args = ["unmask"]
        if runtime:
            args.append("--runtime")
        return _changes(self._run(args + [name]))

    def start(self, name: str, mode: str = JOB_MODE) -> Job:
        return self._submit("start", name, mode)

    def stop(self, name: str, mode: str = JOB_MODE) -> Job:
        return self._submit("stop", name, mode)

    def restart(self, name: str, mode: str = JOB_MODE) -> Job:
        return self._submit("restart", name, mode)


def connect(scope: str = SYSTEM, systemctl: str = SYSTEMCTL) -> Connection:
    """
    Open a session with the manager of the given scope, checking that it responds.
    """
    conn = Connection(scope, systemctl)
    try:
        conn.ping()
    except ManagerError as ex:
        raise ConnectionFailed("cannot connect to systemd: {}".format(ex.message)) from ex
    return conn


@contextmanager
def context(scope: str = SYSTEM, conn: Optional[Connection] = None) -> Generator[Connection, None, None]:
    """
    Run multiple unit commands in a single connection:

        with context(USER) as conn:
            ensure_enabled(conn, "syncthing.service", True)
            ensure_active(ctx, conn, "syncthing.service", True)
    """
    conn = conn or connect(scope)
    try:
        yield conn
    finally:
        conn.close()


def daemon_reload(conn: Connection) -> None:
    """
    Make the manager re-read all unit definitions.
    """
    try:
        conn.reload()
    except ManagerError as ex:
        raise ReloadFailed("cannot reload systemd: {}".format(ex.message)) from ex


def get_status(conn: Connection, name: str) -> UnitStatus:
    """
    Look up the runtime status of a unit.  Unknown units are reported with a `not-found` load
    state rather than an error.
    """
    try:
        statuses = conn.list_by_names([name])
    except ManagerError as ex:
        raise QueryFailed("cannot query unit {}: {}".format(name, ex.message)) from ex
    if not statuses:
        raise QueryFailed("cannot query unit {}: no status returned".format(name))
    return statuses[0]


def get_unit_file_state(conn: Connection, name: str) -> str:
    try:
        return conn.get_unit_file_state(name)
    except ManagerError as ex:
        raise QueryFailed("cannot get unit file state for {}: {}"
                          .format(name, ex.message)) from ex


def wait_job(ctx: Context, job: Job) -> JobResult:
    """
    Wait for a job's result, giving up as soon as the context is cancelled.
    """
    LOG.debug("Waiting for %r", job)
    result = ctx.wait(job.future)
    LOG.debug("Job %s %s finished: %s", job.verb, job.unit, result.status)
    return result


def ensure_enabled(conn: Connection, name: str, enable: bool) -> Result[Unset]:
    """
    Enable or disable a unit.  Units which can't be toggled (static, masked etc.) are left alone.
    """
    unit_file_state = get_unit_file_state(conn, name)
    enabled, enableable = states.is_enabled(unit_file_state)
    LOG.debug("Unit %s: enable=%r, state=%r, enabled=%r, enableable=%r",
              name, enable, unit_file_state, enabled, enableable)
    try:
        if enableable and enable and not enabled:
            conn.enable(name)
        elif enableable and not enable and unit_file_state == states.ENABLED:
            conn.disable(name)
        else:
            return Result(State.unchanged)
    except ManagerError as ex:
        raise ActionFailed(states.enable_verb(enable), name, ex.message) from ex
    return Result(State.success)


def ensure_masked(conn: Connection, name: str, target: str) -> Result[Unset]:
    """
    Move a unit towards the given unit file state as far as masking is concerned: mask it if the
    target is a masked state, or unmask it if currently masked and the target is anything else.
    """
    unit_file_state = get_unit_file_state(conn, name)
    mask = states.is_masked(target)
    LOG.debug("Unit %s: target=%r, state=%r", name, target, unit_file_state)
    try:
        if mask and target != unit_file_state:
            conn.mask(name, runtime=(target == states.MASKED_RUNTIME))
        elif not mask and states.is_masked(unit_file_state):
            conn.unmask(name)
        else:
            return Result(State.unchanged)
    except ManagerError as ex:
        raise ActionFailed(states.mask_verb(mask), name, ex.message) from ex
    return Result(State.success)


def ensure_active(ctx: Context, conn: Connection, name: str, activate: bool,
                  restart: bool = False, mode: str = JOB_MODE) -> Result[str]:
    """
    Start or stop a unit, and wait for the job to finish.

    With `restart` set, an active unit is restarted rather than left running.
    """
    status = get_status(conn, name)
    active = states.is_active(status.active_state)
    LOG.debug("Unit %s: activate=%r, restart=%r, state=%r", name, activate, restart,
              status.active_state)
    if restart and activate:
        verb = "restart"
    elif activate and not active:
        verb = "start"
    elif active and not activate:
        verb = "stop"
    else:
        return Result(State.unchanged)
    try:
        job = getattr(conn, verb)(name, mode)
    except ManagerError as ex:
        raise ActionFailed(verb, name, ex.message) from ex
    result = wait_job(ctx, job)
    if result.status != JOB_DONE:
        reason = "job finished with result '{}'".format(result.status)
        if result.message:
            reason = "{}: {}".format(reason, result.message)
        raise ActionFailed(verb, name, reason)
    return Result(State.success, result.status)
