"""
Exceptions raised while talking to the service manager.

Everything derives from `SystemdError`, so callers at the reporting boundary can catch the whole
family in one place and turn it into diagnostics.
"""


class SystemdError(Exception):
    """
    Base class for failures reaching or instructing the service manager.

    Attributes:
        message (str): The underlying error text, usually as printed by the manager
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message

    def __repr__(self):
        return "<{0}: {1}>".format(self.__class__.__name__, self.message)


class ConnectionFailed(SystemdError):
    """
    The service manager could not be reached at all.  Never retried.
    """


class ManagerError(SystemdError):
    """
    The service manager was reached, but rejected a call.

    Attributes:
        code (int): Exit status of the rejected call, if known
    """

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code

    def __repr__(self):
        return "<{0}; Code: {1}; Message: {2}>".format(self.__class__.__name__, self.code,
                                                       self.message)


class ReloadFailed(SystemdError):
    """
    Unit definitions could not be reloaded, so no unit state can be trusted.
    """


class QueryFailed(SystemdError):
    """
    The status or unit file state of a unit could not be obtained.
    """


class ActionFailed(SystemdError):
    """
    A change to a unit was refused, or its job did not complete successfully.

    Attributes:
        verb (str): The attempted action, e.g. ``enable`` or ``restart``
        unit (str): Name of the unit being changed
        reason (str): The manager's error text, or the job's result
    """

    def __init__(self, verb: str, unit: str, reason: str):
        super().__init__("cannot {} unit {}: {}".format(verb, unit, reason))
        self.verb = verb
        self.unit = unit
        self.reason = reason


class Cancelled(SystemdError):
    """
    The caller gave up waiting.  Jobs already submitted to the manager keep running.
    """

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class DeadlineExceeded(Cancelled):
    """
    The caller's deadline passed while waiting.
    """

    def __init__(self, message: str = "deadline exceeded"):
        super().__init__(message)
