"""Global constants for blinkscope."""

# Companion project

REPO_URL = "https://github.com/Open-Sorcerer/blinks-debugger"
REPO_DIR_NAME = "blinks-debugger"
PROJECT_HOME_URL = "https://github.com/Open-Sorcerer/blinks-debugger"
HOME_DIR_NAME = ".blinkscope"
PORT_FILE_NAME = "last_port.txt"

# Port range constants for the debugger dev server

BASE_PORT = 3000
MAX_PORT = 3010
DEFAULT_HOST = "127.0.0.1"

# Environment

SIGNATURE_ENV = "BLINKSCOPE_DEBUGGER_INSTANCE"
RPC_ENV_KEY = "NEXT_PUBLIC_RPC"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
HOME_ENV = "BLINKSCOPE_HOME"

# Dev server output

READY_MARKER = "- Local:"
ERROR_MARKER = "error"
TARGET_URL_PARAM = "url"

# Retry configuration
DEFAULT_CLONE_RETRIES = 3
