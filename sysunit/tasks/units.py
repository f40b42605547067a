"""
Reconciliation of a single systemd unit against its declared state.

The public operations (`read`, `create`, `update`, `delete`) each hold the unit's lock and a fresh
manager connection for their whole duration, and report failures as diagnostics rather than
raising.

Changes are always applied in the same order: enablement first, then masking, then activation,
as a masked unit can't be started and masking interacts with enablement.
"""

from functools import partial, wraps
import logging
from typing import Any, Callable, List, Optional, Tuple

from ..context import Context
from ..errors import ActionFailed, SystemdError
from ..plumbing import states, systemd
from ..plumbing.common import Collect, Result
from ..provider import Provider
from ..resource import (Diagnostic, Diagnostics, has_errors, ResourceData, Rollback, Severity,
                        with_severity)


LOG = logging.getLogger(__name__)

Step = Tuple[str, Callable[[], Result[Any]]]

_STATUS_KEYS = ("description", "load_state", "active_state", "sub_state", "followed", "job_id",
                "job_type")


def _operation(label: str):
    """
    Wrap an operation on an open connection into a public entry point, which takes the unit lock,
    connects to the right manager, and converts failures into diagnostics.
    """
    def outer(fn: Callable[[Context, systemd.Connection, ResourceData, str], Diagnostics]):
        @wraps(fn)
        def inner(provider: Provider, data: ResourceData,
                  ctx: Optional[Context] = None) -> Diagnostics:
            ctx = ctx or provider.context()
            LOG.debug("About to %s %s", label, data.name)
            with provider.locks.locked(data.name):
                try:
                    with provider.session(data.scope) as conn:
                        return fn(ctx, conn, data, provider.job_mode)
                except SystemdError as ex:
                    LOG.debug("Failed to %s %s: %r", label, data.name, ex)
                    return [Diagnostic.from_error(ex)]
        return inner
    return outer


def _read(conn: systemd.Connection, data: ResourceData) -> None:
    name = data.name
    systemd.daemon_reload(conn)
    status = systemd.get_status(conn, name)
    for key in _STATUS_KEYS:
        data.set(key, getattr(status, key))
    if status.load_state == states.NOT_FOUND:
        LOG.debug("Unit %s not found", name)
        data.set_id("")
        snapshot = Rollback.capture(status)
    else:
        data.set_id(status.name)
        unit_file_state = systemd.get_unit_file_state(conn, status.name)
        enabled, enableable = states.is_enabled(unit_file_state)
        data.set("start", states.is_active(status.active_state))
        if enableable:
            data.set("enable", enabled)
        data.set("mask", states.is_masked(unit_file_state))
        snapshot = Rollback.capture(status, unit_file_state)
    data.capture_rollback(snapshot)


@Result.collect
def _apply(steps: List[Step], ignore_errors: bool) -> Collect[Diagnostics]:
    failures: Diagnostics = []
    for label, action in steps:
        try:
            yield action()
        except ActionFailed as ex:
            LOG.debug("Action failed: %r", ex)
            summary = "cannot {}{} unit {}: {}".format(label, ex.verb, ex.unit, ex.reason)
            failures.append(Diagnostic(Severity.error, summary, "", ex))
            if not ignore_errors:
                break
    return failures


def _finish(conn: systemd.Connection, data: ResourceData, result: Result[Diagnostics]) -> Diagnostics:
    data.applied = result
    if result:
        LOG.info("Changed unit %s:\n%s", data.name, result)
    diags = with_severity(result.value, data.ignore_errors)
    if has_errors(diags):
        return diags
    _read(conn, data)
    return diags


def _plan(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str,
          creating: bool) -> List[Step]:
    name = data.name
    rollback = data.rollback or Rollback(existed=False)
    enable = data.get_tristate("enable")
    mask = data.get_tristate("mask")
    start = data.get_tristate("start")
    restart = data.has_change("restart_on")
    LOG.debug("Update %s: enable=%s, mask=%s, start=%s, restart=%r, creating=%r, rollback=%r",
              name, enable.name, mask.name, start.name, restart, creating, rollback)
    steps: List[Step] = []
    if enable.is_set:
        if creating or data.has_change("enable"):
            steps.append(("", partial(systemd.ensure_enabled, conn, name, enable.value)))
    else:
        steps.append(("rollback ", partial(systemd.ensure_enabled, conn, name, rollback.enabled)))
    if mask.is_set:
        if creating or data.has_change("mask"):
            target = states.MASKED if mask.value else ""
            steps.append(("", partial(systemd.ensure_masked, conn, name, target)))
    elif rollback.mask_target:
        steps.append(("rollback ", partial(systemd.ensure_masked, conn, name,
                                           rollback.mask_target)))
    if start.is_set:
        if creating or data.has_change("start") or restart:
            steps.append(("", partial(systemd.ensure_active, ctx, conn, name, start.value,
                                      restart, mode)))
    else:
        steps.append(("rollback ", partial(systemd.ensure_active, ctx, conn, name,
                                           rollback.active, restart, mode)))
    return steps


def _update(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str,
            creating: bool = False) -> Diagnostics:
    if not creating:
        systemd.daemon_reload(conn)
    steps = _plan(ctx, conn, data, mode, creating)
    return _finish(conn, data, _apply(steps, data.ignore_errors))


@_operation("read")
def read(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str) -> Diagnostics:
    """
    Refresh observed attributes, capturing a rollback snapshot if none is held yet.
    """
    _read(conn, data)
    return []


@_operation("create")
def create(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str) -> Diagnostics:
    """
    Bring a unit under management: observe it, then apply every declared knob.
    """
    _read(conn, data)
    return _update(ctx, conn, data, mode, creating=True)


@_operation("update")
def update(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str) -> Diagnostics:
    """
    Apply knobs whose declared value changed, and restore unset knobs to their rollback values.
    """
    return _update(ctx, conn, data, mode)


@_operation("delete")
def delete(ctx: Context, conn: systemd.Connection, data: ResourceData, mode: str) -> Diagnostics:
    """
    Release a unit from management, restoring its enablement and activation to the snapshot
    taken when it was first observed.
    """
    name = data.name
    systemd.daemon_reload(conn)
    if not data.id:
        LOG.debug("Deleted %s (no rollback)", name)
        return []
    rollback = data.rollback or Rollback(existed=False)
    restart = data.has_change("restart_on")
    LOG.debug("Rollback %s: %s, %s (restart: %r)", name, states.enable_verb(rollback.enabled),
              states.start_verb(rollback.active), restart)
    steps: List[Step] = [
        ("rollback ", partial(systemd.ensure_enabled, conn, name, rollback.enabled)),
        ("rollback ", partial(systemd.ensure_active, ctx, conn, name, rollback.active, restart,
                              mode)),
    ]
    return _finish(conn, data, _apply(steps, data.ignore_errors))
