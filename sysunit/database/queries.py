from typing import List, Optional

from sqlalchemy.orm import Session

from . import ManagedUnit


def get_unit(sess: Session, name: str, scope: str = "system") -> ManagedUnit:
    record = sess.get(ManagedUnit, (name, scope))
    if not record:
        raise KeyError(name)
    return record


def list_units(sess: Session, scope: Optional[str] = None) -> List[ManagedUnit]:
    query = sess.query(ManagedUnit)
    if scope:
        query = query.filter(ManagedUnit.scope == scope)
    return query.order_by(ManagedUnit.scope, ManagedUnit.name).all()
