from enum import Enum


class SessionStatus(str, Enum):
    BOT = "bot"
    WAITING = "waiting"
    SERVICE = "service"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Department(str, Enum):
    PERSONAL = "personal"
    FISCAL = "fiscal"
    ACCOUNTING = "accounting"
    FINANCIAL = "financial"


class OperatorProfile(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    OPERATOR = "operator"


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CancellationReason(str, Enum):
    INACTIVITY = "inactivity"
    INACTIVITY_NO_SESSION = "inactivity_no_session"
    WAITING_TIMEOUT = "waiting_timeout"
    OPERATOR_CANCEL = "operator_cancel"


class BotSessionStatus(str, Enum):
    OPENED = "opened"
    PAUSED = "paused"
    CLOSED = "closed"


class TransitionAction(str, Enum):
    HAND_OFF = "hand_off"
    REOPEN_BOT = "reopen_bot"
    CLAIM = "claim"
    TRANSFER = "transfer"
    COMPLETE = "complete"
    CANCEL = "cancel"


class GatewayEventKind(str, Enum):
    MESSAGES_UPSERT = "messages.upsert"
    MESSAGES_UPDATE = "messages.update"
    MESSAGES_DELETE = "messages.delete"
    CONNECTION_UPDATE = "connection.update"
    GROUP_PARTICIPANTS_UPDATE = "group-participants.update"
    GROUP_UPDATE = "group.update"
    GROUPS_UPSERT = "groups.upsert"
    SEND_MESSAGE = "send.message"
    TYPEBOT_START = "typebot.start"
    TYPEBOT_CHANGE_STATUS = "typebot.change.status"
