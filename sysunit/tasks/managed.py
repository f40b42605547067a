"""
Lifecycle of units managed through the state store.

This plays the part of a declarative driver: the previous operation's attributes are loaded from
the database, handed to the reconciler, and whatever it reports back is persisted for next time.
"""

import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session as SQLASession

from ..context import Context
from ..database.queries import get_unit
from ..plumbing import records
from ..plumbing.common import Collect, Result
from ..plumbing.systemd import SYSTEM
from ..provider import Provider
from ..resource import Diagnostics, has_errors, ResourceData
from . import units


LOG = logging.getLogger(__name__)


@Result.collect
def refresh(sess: SQLASession, provider: Provider, name: str, scope: str = SYSTEM,
            ctx: Optional[Context] = None) -> Collect[Diagnostics]:
    """
    Re-read a managed unit's observed state, and store it.
    """
    record = get_unit(sess, name, scope)
    data = ResourceData(record.config, record.state)
    diags = units.read(provider, data, ctx)
    yield records.ensure_record(sess, name, scope, record.config, data.state)
    return diags


@Result.collect
def apply(sess: SQLASession, provider: Provider, config: Mapping[str, Any],
          ctx: Optional[Context] = None) -> Collect[Diagnostics]:
    """
    Reconcile a unit towards a declaration, bringing it under management if it isn't already.

    Existing units are refreshed first, so that drift since the last run shows up as a change.
    """
    data = ResourceData(config)
    name = data.name
    scope = data.scope
    ctx = ctx or provider.context()
    try:
        record = get_unit(sess, name, scope)
    except KeyError:
        LOG.debug("Unit %s is not yet managed", name)
        diags = units.create(provider, data, ctx)
    else:
        current = ResourceData(record.config, record.state)
        diags = units.read(provider, current, ctx)
        if has_errors(diags):
            return diags
        data = ResourceData(config, current.state)
        diags = units.update(provider, data, ctx)
    if data.applied is not None:
        yield data.applied
    # Persist even after failures, so that the rollback snapshot isn't lost.
    yield records.ensure_record(sess, name, scope, config, data.state)
    return diags


@Result.collect
def destroy(sess: SQLASession, provider: Provider, name: str, scope: str = SYSTEM,
            ctx: Optional[Context] = None) -> Collect[Diagnostics]:
    """
    Stop managing a unit, rolling it back to how it was first found.  The record is kept if the
    rollback failed, so that it can be retried.
    """
    record = get_unit(sess, name, scope)
    data = ResourceData(None, record.state)
    diags = units.delete(provider, data, ctx)
    if data.applied is not None:
        yield data.applied
    if has_errors(diags):
        yield records.ensure_record(sess, name, scope, record.config, data.state)
    else:
        yield records.remove_record(sess, name, scope)
    return diags
