"""Constants for the Home Assistant WebSocket API."""

# Endpoints
WS_PATH = "/api/websocket"
TOKEN_PATH = "/auth/token"
REVOKE_PATH = "/auth/revoke"

# Message types
MSG_TYPE_AUTH = "auth"
MSG_TYPE_AUTH_REQUIRED = "auth_required"
MSG_TYPE_AUTH_OK = "auth_ok"
MSG_TYPE_AUTH_INVALID = "auth_invalid"
MSG_TYPE_SUPPORTED_FEATURES = "supported_features"
MSG_TYPE_GET_STATES = "get_states"
MSG_TYPE_SUBSCRIBE_EVENTS = "subscribe_events"
MSG_TYPE_SUBSCRIBE_ENTITIES = "subscribe_entities"
MSG_TYPE_UNSUBSCRIBE_EVENTS = "unsubscribe_events"
MSG_TYPE_PING = "ping"
MSG_TYPE_PONG = "pong"
MSG_TYPE_EVENT = "event"
MSG_TYPE_RESULT = "result"

# Command ids
SUPPORTED_FEATURES_ID = 1  # Always the first message after auth
FIRST_COMMAND_ID = 2

# Error codes
ERR_CANNOT_CONNECT = 1
ERR_INVALID_AUTH = 2
ERR_CONNECTION_LOST = 3
ERR_HASS_HOST_REQUIRED = 4
ERR_INVALID_AUTH_CALLBACK = 6

# Connection lifecycle events
EVENT_READY = "ready"
EVENT_DISCONNECTED = "disconnected"
EVENT_RECONNECT_ERROR = "reconnect-error"

# Handshake retry delay (seconds)
SETUP_RETRY_DELAY = 1.0

# Reconnect backoff: min(attempt, RECONNECT_MAX_STEPS) * RECONNECT_DELAY seconds
RECONNECT_DELAY = 1.0
RECONNECT_MAX_STEPS = 5

# Time to wait before unsubscribing after the last collection subscriber leaves
UNSUB_GRACE_PERIOD = 5.0

# Server versions
COALESCE_MESSAGES_VERSION = (2022, 9)
SUBSCRIBE_ENTITIES_VERSION = (2022, 4, 0)

# Key of the entity collection on a connection
ENTITIES_COLLECTION_KEY = "_ent"
