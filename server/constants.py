"""
Server constants for the room/inventory MUD.

Central location for event names, message types, configuration keys and their
defaults. Keeping them here avoids magic strings spread across the routers,
services and the Socket.IO entry point.
"""

# =============================================================================
# Socket.IO Event Names
# =============================================================================

# The event name that clients send when they want to run a command
MESSAGE_IN = 'message_to_server'

# The event name the server uses to send replies and room broadcasts back
MESSAGE_OUT = 'message'

# =============================================================================
# Message Types
# =============================================================================

# Command results, confirmations and room announcements
MSG_TYPE_SYSTEM = 'system'

# Validation, state and persistence failures
MSG_TYPE_ERROR = 'error'

# =============================================================================
# Command Prefixes
# =============================================================================

# Commands may be typed bare ("take apple") or slash-prefixed ("/take apple")
COMMAND_PREFIX = '/'

# =============================================================================
# Environment Variable Keys
# =============================================================================

# SQLite database backing rooms and users
ENV_DB_PATH = 'MUD_DB_PATH'

# Lock manager cadence: how often pending lock requests are re-polled
ENV_LOCK_POLL_MS = 'MUD_LOCK_POLL_MS'

# Lock manager observability: warn when a request has waited this long
ENV_LOCK_WAIT_WARN_MS = 'MUD_LOCK_WAIT_WARN_MS'

# Room id new users are placed into on first connect
ENV_START_ROOM = 'MUD_START_ROOM'

# Comma-separated list of user ids that are always treated as admins
ENV_ADMIN_IDS = 'MUD_ADMIN_IDS'

# Maximum message length override
ENV_MAX_MESSAGE_LEN = 'MUD_MAX_MESSAGE_LEN'

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_DB_FILE = 'world.db'

# Pending lock requests are re-checked at least this often (milliseconds)
DEFAULT_LOCK_POLL_MS = 10

# A lock request waiting longer than this gets a WARNING log line (never a timeout)
DEFAULT_LOCK_WAIT_WARN_MS = 5000

DEFAULT_START_ROOM = 'hall'

DEFAULT_MAX_MESSAGE_LENGTH = 1000

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 5000

# =============================================================================
# Error Messages
# =============================================================================

ERROR_NOT_CONNECTED = 'Not connected.'
ERROR_MESSAGE_TOO_LONG = 'Message too long'
ERROR_INVALID_COMMAND = 'Invalid command'
ERROR_ADMIN_ONLY = 'You do not have permission to run that command.'
ERROR_SAVE_FAILED = 'Could not save that change, so nothing was moved. Please try again.'

# Valid yes/no words accepted for boolean item fields in admin edits
CONFIRM_YES = ['yes', 'y', 'true', '1', 'on']
CONFIRM_NO = ['no', 'n', 'false', '0', 'off']
