from sqlalchemy import CheckConstraint, Column, DateTime, JSON, String, func
from sqlalchemy.orm import declarative_base


__all__ = ["Base", "ManagedUnit"]


UNIT_NAME_TYPE = String(256)
SCOPE_TYPE = String(6)

Base = declarative_base()


class ManagedUnit(Base):
    """
    A unit under management: what was last declared for it, and the attributes persisted by the
    last operation on it (observed state and rollback snapshot included).
    """
    __tablename__ = "managed_units"

    name = Column(UNIT_NAME_TYPE, primary_key=True)
    scope = Column(SCOPE_TYPE, CheckConstraint("scope IN ('system', 'user')"),
                   primary_key=True, default="system")
    config = Column(JSON, nullable=False, default=dict)
    state = Column(JSON, nullable=False, default=dict)
    created = Column(DateTime(timezone=True), server_default=func.now())
    modified = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __str__(self):
        return self.name

    def __repr__(self):
        return "<ManagedUnit {0} ({1}) {2}>".format(self.name, self.scope,
                                                    self.unit_id or "not found")

    def __eq__(self, other):
        if not isinstance(other, ManagedUnit):
            return False
        else:
            return (self.name, self.scope) == (other.name, other.scope)

    def __hash__(self):
        return hash((self.name, self.scope))

    @property
    def unit_id(self):
        """Canonical unit name reported by the manager, empty if not found"""
        return (self.state or {}).get("id", "")
