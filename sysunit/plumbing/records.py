"""
Persisted records of managed units.
"""

import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session as SQLASession

from ..database import ManagedUnit
from ..database.queries import get_unit
from .common import Collect, Result, State, Unset


LOG = logging.getLogger(__name__)


def _create_record(sess: SQLASession, name: str, scope: str, config: Mapping[str, Any],
                   state: Mapping[str, Any]) -> Result[ManagedUnit]:
    record = ManagedUnit(name=name, scope=scope, config=dict(config), state=dict(state))
    sess.add(record)
    sess.flush()
    LOG.debug("Created unit record: %r", record)
    return Result(State.created, record)


def _update_record(sess: SQLASession, record: ManagedUnit, config: Mapping[str, Any],
                   state: Mapping[str, Any]) -> Result[Unset]:
    record.config = dict(config)
    record.state = dict(state)
    if not sess.is_modified(record):
        return Result(State.unchanged)
    sess.flush()
    LOG.debug("Updated unit record: %r", record)
    return Result(State.success)


@Result.collect
def ensure_record(sess: SQLASession, name: str, scope: str, config: Mapping[str, Any],
                  state: Mapping[str, Any]) -> Collect[ManagedUnit]:
    """
    Store the declared configuration and persisted attributes of a unit.
    """
    try:
        record = get_unit(sess, name, scope)
    except KeyError:
        res_record = yield from _create_record(sess, name, scope, config, state)
        record = res_record.value
    else:
        yield _update_record(sess, record, config, state)
    return record


def remove_record(sess: SQLASession, name: str, scope: str) -> Result[Unset]:
    """
    Forget a unit which is no longer managed.
    """
    try:
        record = get_unit(sess, name, scope)
    except KeyError:
        return Result(State.unchanged)
    sess.delete(record)
    sess.flush()
    LOG.debug("Deleted unit record: %r", record)
    return Result(State.success)
