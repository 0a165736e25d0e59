# Wire protocol constants (field names, message types, defaults)

# Record fields
F_FROM = "from"
F_TEXT = "text"
F_TO = "to"
F_TS = "ts"
F_TYPE = "type"
F_MD5 = "md5"

# Accepted on decode for peers that name the digest field explicitly.
F_CHECKSUM_ALT = "checksum"

# Message types
T_JOIN = "join"
T_MSG = "msg"
T_PM = "pm"
T_SYSTEM = "system"
T_ACK = "ack"
T_ERROR = "error"

# Sender name for relay-originated records.
SERVER_NAME = "server"

RECORD_TERMINATOR = b"\n"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5000

USERNAME_MAX_CHARS = 32
MAX_RECORD_BYTES = 64 * 1024

# Client reconnect backoff (seconds)
BACKOFF_INITIAL_S = 1
BACKOFF_MAX_S = 30

DEFAULT_CLIENT_USERNAME = "anon"
