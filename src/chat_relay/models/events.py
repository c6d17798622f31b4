"""
Socket.IO event names.
"""


class C2SEvent:
    CHAT_MESSAGE = "chat message"


class S2CEvent:
    CHAT_MESSAGE = "chat message"
    # Private continuity id handed to each connection; presented again on reconnect.
    SESSION = "session"
