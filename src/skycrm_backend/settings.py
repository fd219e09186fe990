import os
import threading

class BackendSettings:
    _instance = None
    _lock = threading.Lock()

    def __init__(self):
        # Token verification (tokens are issued by the auth service)
        self.JWT_SECRET = os.environ.get("JWT_SECRET", "change-me")
        self.JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
        self.JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", None)

        # Allowed browser origin for the socket endpoint
        self.CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:3000")

        # WebSocket limits
        self.WS_MAX_TOTAL_CONNECTIONS = int(os.environ.get("WS_MAX_TOTAL_CONNECTIONS", "10000"))
        self.WS_MAX_CONNECTIONS_PER_USER = int(os.environ.get("WS_MAX_CONNECTIONS_PER_USER", "10"))
        self.WS_MAX_ROOMS_PER_CONNECTION = int(os.environ.get("WS_MAX_ROOMS_PER_CONNECTION", "50"))
        self.WS_MAX_ROOM_NAME_LENGTH = int(os.environ.get("WS_MAX_ROOM_NAME_LENGTH", "128"))

        # WebSocket delivery
        self.WS_SEND_TIMEOUT = float(os.environ.get("WS_SEND_TIMEOUT", "5.0"))
        self.WS_SEND_QUEUE_SIZE = int(os.environ.get("WS_SEND_QUEUE_SIZE", "256"))
        self.WS_HANDLER_TIMEOUT = float(os.environ.get("WS_HANDLER_TIMEOUT", "5.0"))

        # Optional Redis bridge for multi-instance fan-out
        self.REDIS_URL = os.environ.get("REDIS_URL", None)

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(BackendSettings, cls).__new__(cls)
        return cls._instance

settings = BackendSettings()
