"""
Process-wide configuration shared by all reconciliations.
"""

from contextlib import contextmanager
import logging
import os
from typing import Callable, Generator, Mapping, Optional

from .context import Context
from .locks import UnitLockRegistry
from .plumbing import systemd


LOG = logging.getLogger(__name__)

Connector = Callable[[str], systemd.Connection]


class Provider:
    """
    Owner of the unit lock registry and of the means to reach the service manager.

    Create one per process (or per lifecycle driver) and pass it to every operation, so that
    operations on the same unit share a lock:

        provider = Provider.from_env()
        diags = units.update(provider, data)
    """

    def __init__(self, connect: Optional[Connector] = None, systemctl: str = systemd.SYSTEMCTL,
                 job_mode: str = systemd.JOB_MODE, job_timeout: Optional[float] = None,
                 locks: Optional[UnitLockRegistry] = None):
        self.systemctl = systemctl
        self.job_mode = job_mode
        self.job_timeout = job_timeout
        self.locks = locks or UnitLockRegistry()
        self._connect = connect or self._connect_systemctl

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ, **kwargs) -> "Provider":
        """
        Build a provider using `SYSUNIT_*` environment variables for any settings not given.
        """
        kwargs.setdefault("systemctl", environ.get("SYSUNIT_SYSTEMCTL", systemd.SYSTEMCTL))
        kwargs.setdefault("job_mode", environ.get("SYSUNIT_JOB_MODE", systemd.JOB_MODE))
        if "job_timeout" not in kwargs:
            timeout = environ.get("SYSUNIT_JOB_TIMEOUT")
            try:
                kwargs["job_timeout"] = float(timeout) if timeout else None
            except ValueError:
                raise ValueError("SYSUNIT_JOB_TIMEOUT must be a number of seconds, not {!r}"
                                 .format(timeout))
        return cls(**kwargs)

    def __repr__(self):
        return "<{}: {} (mode: {}, timeout: {})>".format(self.__class__.__name__, self.systemctl,
                                                         self.job_mode, self.job_timeout)

    def _connect_systemctl(self, scope: str) -> systemd.Connection:
        return systemd.connect(scope, self.systemctl)

    def context(self, timeout: Optional[float] = None) -> Context:
        """
        Create a cancellation context, bounded by the configured job timeout unless overridden.
        """
        return Context(self.job_timeout if timeout is None else timeout)

    @contextmanager
    def session(self, scope: str) -> Generator[systemd.Connection, None, None]:
        """
        Open a fresh connection to the manager of the given scope, closing it afterwards.
        """
        LOG.debug("Connecting to %s manager", scope)
        with systemd.context(scope, self._connect(scope)) as conn:
            yield conn
