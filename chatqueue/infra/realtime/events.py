from enum import Enum


class OperatorEvent(str, Enum):
    MESSAGE = "message"
    QUEUE_UPDATE = "queue_update"
    WEBHOOK_EVENT = "webhook_event"
    OPERATOR_STATUS = "operator_status"
    SYSTEM_NOTIFICATION = "system_notification"
    DISCONNECT = "disconnect"
