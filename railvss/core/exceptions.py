class RailVSSError(Exception):
    """Base class for all errors raised by railvss."""


class NotFoundError(RailVSSError, KeyError):
    # KeyError would otherwise repr() the message with quotes
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class InvalidTopologyError(RailVSSError, ValueError):
    pass


class OutOfRangeError(RailVSSError, IndexError):
    pass


class ConsistencyError(RailVSSError, ValueError):
    pass


class ImportExportError(RailVSSError, OSError):
    pass
