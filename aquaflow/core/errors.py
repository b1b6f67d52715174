"""Error taxonomy.

Validation failures are ``ValueError`` subclasses and are raised before any
network call. Failures that can only be discovered by talking to the remote
store are ``RuntimeError`` subclasses; the sync layer turns those into a
failed ``PersistResult`` instead of letting them escape.
"""


class InvalidTransition(ValueError):
    def __init__(self, current: str, requested: str, reason: str = ""):
        self.current = current
        self.requested = requested
        self.reason = reason
        msg = f"cannot move booking from {current!r} to {requested!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EmptyOrder(ValueError):
    pass


class UnknownGallonType(ValueError):
    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__("unknown gallon type(s): " + ", ".join(self.names))


class MalformedRecord(ValueError):
    pass


class UnknownRecordKind(MalformedRecord):
    pass


class DuplicateUser(ValueError):
    pass


class PermissionDenied(ValueError):
    pass


class LockTimeout(RuntimeError):
    pass


class RemoteUnreachable(RuntimeError):
    pass


class RemoteError(RuntimeError):
    """The remote store answered, but with ``status: error``."""
