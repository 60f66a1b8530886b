# evewatch/errors.py


class EvewatchError(Exception):
    pass


class ConfigError(EvewatchError):
    pass


class ClassificationError(EvewatchError):
    """A line that is not valid JSON, or an event missing fields we need."""


class SinkError(EvewatchError):
    pass


class RecordRejected(SinkError):
    """The store refused this one record. Drop it and keep going."""


class SinkUnavailable(SinkError):
    """The store can't take writes right now. The batch must be retried."""


class AlertNotFound(EvewatchError):
    pass
