"""
Scripts to manage units declaratively.
"""

from typing import Dict, List, Optional, cast

from sqlalchemy.orm import Session

from ..database.queries import get_unit, list_units
from ..plumbing.systemd import SYSTEM, USER
from ..provider import Provider
from ..tasks import managed
from .utils import confirm, DocOptArgs, entrypoint, error, report, timeout


def _scope(opts: DocOptArgs) -> str:
    return USER if opts.get("--user") else SYSTEM


def _knob(opts: DocOptArgs, on: str, off: str) -> Optional[bool]:
    if opts.get(on):
        return True
    elif opts.get(off):
        return False
    else:
        return None


def _pairs(values: List[str]) -> Dict[str, str]:
    pairs = {}
    for value in values:
        key, sep, item = value.partition("=")
        if not sep or not key:
            error("Expected KEY=VALUE, got {!r}".format(value), exit=2)
        pairs[key] = item
    return pairs


@entrypoint
def apply(opts: DocOptArgs, sess: Session, provider: Provider, unit: str):
    """
    Reconcile a unit towards the requested state, bringing it under management if needed.

    Usage: {script} [--user] [--enable | --disable] [--mask | --unmask] [--start | --stop]
                    [--restart-on=<pair>]... [--ignore-errors] [--timeout=SECS] UNIT

    Anything not requested is put back to how the unit was when first managed.  Changing any
    --restart-on KEY=VALUE pair from the previous run restarts the unit.
    """
    user = opts.get("--user", False)
    config = {"name": unit,
              "system": not user,
              "user": user,
              "enable": _knob(opts, "--enable", "--disable"),
              "mask": _knob(opts, "--mask", "--unmask"),
              "start": _knob(opts, "--start", "--stop"),
              "restart_on": _pairs(cast(List[str], opts.get("--restart-on") or [])),
              "ignore_errors": opts.get("--ignore-errors", False)}
    result = managed.apply(sess, provider, config, provider.context(timeout(opts)))
    # Keep the rollback snapshot even if reporting exits with an error status.
    sess.commit()
    report(result)


@entrypoint
def show(opts: DocOptArgs, sess: Session, provider: Provider, unit: str):
    """
    Refresh and print the observed state of a managed unit.

    Usage: {script} [--user] [--timeout=SECS] UNIT
    """
    scope = _scope(opts)
    try:
        result = managed.refresh(sess, provider, unit, scope, provider.context(timeout(opts)))
    except KeyError:
        error("Unit {!r} is not managed".format(unit), exit=2)
    sess.commit()
    state = get_unit(sess, unit, scope).state
    print("{} ({})".format(unit, scope))
    for key in ("id", "description", "load_state", "active_state", "sub_state", "enable", "mask",
                "start"):
        print("    {}: {}".format(key, state.get(key, "")))
    for key, value in sorted((state.get("rollback") or {}).items()):
        print("    rollback.{}: {}".format(key, value))
    report(result)


@entrypoint
def destroy(opts: DocOptArgs, sess: Session, provider: Provider, unit: str):
    """
    Stop managing a unit, putting it back to how it was when first managed.

    Usage: {script} [--user] [--yes] [--timeout=SECS] UNIT
    """
    scope = _scope(opts)
    try:
        get_unit(sess, unit, scope)
    except KeyError:
        error("Unit {!r} is not managed".format(unit), exit=2)
    if not opts.get("--yes"):
        confirm("Release {} from management?".format(unit))
    result = managed.destroy(sess, provider, unit, scope, provider.context(timeout(opts)))
    sess.commit()
    report(result)


@entrypoint
def ls(opts: DocOptArgs, sess: Session):
    """
    List managed units.

    Usage: {script} [--user | --system]
    """
    if opts.get("--user"):
        scope = USER
    elif opts.get("--system"):
        scope = SYSTEM
    else:
        scope = None
    for record in list_units(sess, scope):
        state = record.state or {}
        print("{}\t{}\t{}\t{}".format(record.name, record.scope,
                                      state.get("active_state", ""), record.unit_id or "-"))
