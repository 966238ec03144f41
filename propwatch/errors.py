# propwatch/errors.py
"""Exception types raised by the pipeline."""


class PropwatchError(Exception):
    pass


class TerminalStateError(PropwatchError):
    """A SOLD/REMOVED property was handed to a lifecycle mutation."""

    def __init__(self, property_id, status):
        super().__init__(f"property {property_id} is terminal ({status}) and cannot be mutated")
        self.property_id = property_id
        self.status = status


class ReferencePriceError(PropwatchError):
    """Reference unit price could not be resolved for a location."""


class NotificationError(PropwatchError):
    pass
