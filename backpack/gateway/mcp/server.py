"""
MCP Server for Backpack

Tool registry and JSON-RPC dispatch:
- add / calculate: arithmetic
- about-backpack: static description
- get-user-info: the authenticated caller's account

The authenticated user is passed in a ToolContext for each call;
nothing about the caller is stored on the server object.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from backpack import __version__
from backpack.core.store import User

logger = logging.getLogger(__name__)

MCP_SERVER_INFO = {
    "name": "backpack",
    "version": __version__,
}

SUPPORTED_PROTOCOL_VERSIONS = ["2025-03-26", "2024-11-05"]

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


@dataclass
class ToolContext:
    """Per-request state handed to tool handlers."""
    user: Optional[User] = None


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    result: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def format_number(value: float) -> str:
    """Render integral floats without a trailing .0"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# TOOL ARGUMENTS
# =============================================================================

class NoArguments(BaseModel):
    pass


class AddArguments(BaseModel):
    model_config = ConfigDict(strict=True)

    a: float
    b: float


class CalculateArguments(BaseModel):
    model_config = ConfigDict(strict=True)

    operation: Literal["add", "subtract", "multiply", "divide"]
    a: float
    b: float


# =============================================================================
# TOOL HANDLERS
# =============================================================================

ABOUT_TEXT = """Backpack is a universal MCP server that augments AI assistants with personal tools and knowledge.

Connect Claude, ChatGPT, Gemini and other MCP-capable assistants using your Backpack API key.
Available tools:
- add: add two numbers
- calculate: add, subtract, multiply or divide two numbers
- about-backpack: this description
- get-user-info: details of the account you are connected as"""


def handle_add(args: AddArguments, context: ToolContext) -> Dict:
    return text_result(format_number(args.a + args.b))


def handle_calculate(args: CalculateArguments, context: ToolContext) -> Dict:
    a, b = args.a, args.b

    if args.operation == "add":
        result = a + b
    elif args.operation == "subtract":
        result = a - b
    elif args.operation == "multiply":
        result = a * b
    else:
        if b == 0:
            return text_result("Error: Cannot divide by zero")
        result = a / b

    return text_result(format_number(result))


def handle_about(args: NoArguments, context: ToolContext) -> Dict:
    return text_result(ABOUT_TEXT)


def handle_get_user_info(args: NoArguments, context: ToolContext) -> Dict:
    user = context.user
    if user is None:
        return text_result("Not authenticated")

    return text_result(
        f"Email: {user.email}\n"
        f"Member since: {user.created_at.date().isoformat()}\n"
        f"API key: {user.api_key[:8]}..."
    )


@dataclass
class Tool:
    name: str
    description: str
    arguments: type
    handler: Callable[[BaseModel, ToolContext], Dict]

    def to_dict(self) -> Dict[str, Any]:
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


TOOLS = [
    Tool(
        name="add",
        description="Add two numbers",
        arguments=AddArguments,
        handler=handle_add,
    ),
    Tool(
        name="calculate",
        description="Perform a calculation: add, subtract, multiply or divide two numbers",
        arguments=CalculateArguments,
        handler=handle_calculate,
    ),
    Tool(
        name="about-backpack",
        description="What Backpack is and which tools it provides",
        arguments=NoArguments,
        handler=handle_about,
    ),
    Tool(
        name="get-user-info",
        description="Information about the Backpack account this assistant is connected as",
        arguments=NoArguments,
        handler=handle_get_user_info,
    ),
]


# =============================================================================
# SERVER
# =============================================================================

class BackpackMCPServer:
    """MCP Server exposing Backpack tools"""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self.tools = {tool.name: tool for tool in (tools if tools is not None else TOOLS)}

    def get_tools(self) -> List[Dict]:
        """Tools available via MCP"""
        return [tool.to_dict() for tool in self.tools.values()]

    def handle_tool(self, name: str, arguments: Optional[Dict], context: ToolContext) -> Dict:
        """Validate arguments and run a tool."""
        tool = self.tools.get(name)
        if tool is None:
            return text_result(f"Unknown tool: {name}", is_error=True)

        try:
            args = tool.arguments.model_validate(arguments or {})
        except ValidationError as e:
            raise JsonRpcError(INVALID_PARAMS, f"Invalid arguments for tool {name}: {e}") from e

        logger.info(f"Executing tool: {name}")
        try:
            return tool.handler(args, context)
        except Exception as e:
            logger.exception(f"Tool error in {name}: {e}")
            return text_result(f"Error: {e}", is_error=True)

    def initialize(self, params: Dict) -> Dict:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]
        return {
            "protocolVersion": version,
            "serverInfo": MCP_SERVER_INFO,
            "capabilities": {"tools": {"listChanged": False}},
        }

    def _dispatch(self, method: str, params: Dict, context: ToolContext) -> Dict:
        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "params must be an object")
        if method == "initialize":
            return self.initialize(params)
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.get_tools()}
        if method == "tools/call":
            name = params.get("name", "")
            arguments = params.get("arguments")
            if not isinstance(name, str):
                raise JsonRpcError(INVALID_PARAMS, "Tool name must be a string")
            if arguments is not None and not isinstance(arguments, dict):
                raise JsonRpcError(INVALID_PARAMS, "Tool arguments must be an object")
            return self.handle_tool(name, arguments, context)
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def handle_message(self, message: Any, context: ToolContext) -> Optional[Dict]:
        """Handle one JSON-RPC message. Returns None for notifications."""
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            return {
                "jsonrpc": "2.0",
                "id": message.get("id") if isinstance(message, dict) else None,
                "error": JsonRpcError(INVALID_REQUEST, "Invalid Request").to_dict(),
            }

        method = message.get("method", "")
        msg_id = message.get("id")
        params = message.get("params") or {}

        if "id" not in message:
            logger.debug(f"MCP notification: {method}")
            return None

        logger.info(f"MCP Message: method={method}")
        try:
            result = self._dispatch(method, params, context)
        except JsonRpcError as e:
            return {"jsonrpc": "2.0", "id": msg_id, "error": e.to_dict()}

        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    def handle_payload(self, payload: Any, context: ToolContext) -> Optional[Any]:
        """Handle a single message or a batch."""
        if isinstance(payload, list):
            if not payload:
                return {
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": JsonRpcError(INVALID_REQUEST, "Invalid Request").to_dict(),
                }
            responses = [r for r in (self.handle_message(m, context) for m in payload) if r is not None]
            return responses or None
        return self.handle_message(payload, context)


def parse_payload(body: bytes) -> Any:
    """Decode a JSON-RPC request body, raising JsonRpcError on bad JSON."""
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise JsonRpcError(PARSE_ERROR, "Parse error") from e
