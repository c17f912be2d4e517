import os
import shlex

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN", "")
AI_API_KEY = os.environ.get("AI_API_KEY", "")
GITHUB_OUTPUT = os.environ.get("GITHUB_OUTPUT", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Tool server (GitHub MCP server over stdio)
MCP_SERVER_COMMAND = shlex.split(
    os.environ.get("MCP_SERVER_COMMAND", "npx -y @modelcontextprotocol/server-github")
)
MCP_TOKEN_ENV = os.environ.get("MCP_TOKEN_ENV", "GITHUB_PERSONAL_ACCESS_TOKEN")
MCP_CALL_STYLE = os.environ.get("MCP_CALL_STYLE", "direct")
MCP_CALL_TIMEOUT_SEC = float(os.environ.get("MCP_CALL_TIMEOUT_SEC", "30"))
MCP_STARTUP_GRACE_SEC = float(os.environ.get("MCP_STARTUP_GRACE_SEC", "2"))
MCP_STOP_TIMEOUT_SEC = float(os.environ.get("MCP_STOP_TIMEOUT_SEC", "5"))
MCP_MAX_LINE_BYTES = int(os.environ.get("MCP_MAX_LINE_BYTES", str(4 * 1024 * 1024)))

MCP_TOOL_GET_FILE = os.environ.get("MCP_TOOL_GET_FILE", "get_file_contents")
MCP_TOOL_PUT_FILE = os.environ.get("MCP_TOOL_PUT_FILE", "create_or_update_file")
MCP_TOOL_COMMENT = os.environ.get("MCP_TOOL_COMMENT", "add_issue_comment")

# Generative text API
ANTHROPIC_API_URL = os.environ.get(
    "ANTHROPIC_API_URL", "https://api.anthropic.com/v1/messages"
)
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-3-7-sonnet-20250219")
ANTHROPIC_VERSION = os.environ.get("ANTHROPIC_VERSION", "2023-06-01")
ANTHROPIC_MAX_TOKENS = int(os.environ.get("ANTHROPIC_MAX_TOKENS", "4000"))
ANTHROPIC_TIMEOUT_SEC = float(os.environ.get("ANTHROPIC_TIMEOUT_SEC", "120"))

# gh CLI fallback
GH_CLI_TIMEOUT_SEC = float(os.environ.get("GH_CLI_TIMEOUT_SEC", "60"))
GH_OUTPUT_LINES = int(os.environ.get("GH_OUTPUT_LINES", "200"))

README_PATH = os.environ.get("README_PATH", "README.md")
