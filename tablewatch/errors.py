"""
Exception hierarchy for TableWatch
"""


class TableWatchError(Exception):
    """Base class for all TableWatch errors"""


class RuleNotFoundError(TableWatchError, KeyError):
    """Raised when a rule name is not present in the catalog"""

    def __init__(self, rule_name: str):
        super().__init__(f"rule not found: {rule_name}")
        self.rule_name = rule_name

    def __str__(self) -> str:
        return f"rule not found: {self.rule_name}"


class StorageError(TableWatchError):
    """Raised by store implementations when a backend call fails"""


class AlertNotFoundError(StorageError):
    """Raised when an alert id is unknown to the store"""

    def __init__(self, alert_id: str):
        super().__init__(f"alert not found: {alert_id}")
        self.alert_id = alert_id


class InvalidStatusTransitionError(TableWatchError, ValueError):
    """Raised when an alert status change is not pending -> terminal"""


class PublishError(TableWatchError):
    """Raised when an alert could not be delivered after all retries"""


class ProducerModeError(TableWatchError):
    """Raised when a publish call does not match the producer mode"""


class ProducerClosedError(TableWatchError):
    """Raised when publishing on a closed producer"""


class QueueFullError(TableWatchError):
    """Raised when a bounded buffer rejects an item"""
