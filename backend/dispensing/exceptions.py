class StoreError(Exception):
    """A record could not be persisted. The in-memory record keeps its last saved values."""


class SchedulerError(Exception):
    pass
