"""Gitee PR MCP Gateway Server: JSON-RPC dispatcher, stdio transport and CLI."""

import argparse
import asyncio
import copy
import dataclasses
import json
import logging
import os
import signal
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TextIO

from dotenv import load_dotenv
from mcp.types import PARSE_ERROR

from gitee_pr import __version__
from gitee_pr.clients.base import UpstreamClient
from gitee_pr.clients.gitee import GiteeClient
from gitee_pr.config import ConfigError, Settings, load_settings
from gitee_pr.core.errors import (
    GatewayError,
    InternalError,
    MethodNotFoundError,
    ProtocolError,
    ValidationError,
)
from gitee_pr.logger.operation_log import OperationLog
from gitee_pr.mcp_gateway.instances import InstanceRegistry
from gitee_pr.mcp_gateway.token_cache import TokenCache
from gitee_pr.mcp_gateway.tools import (
    LogTools,
    PRTools,
    TokenTools,
    ToolRegistry,
    ToolSpec,
    prefixed_name,
)
from gitee_pr.mcp_gateway.workflow import WorkflowOrchestrator

_gateway_log = logging.getLogger("gitee_pr.mcp_gateway")

SERVER_NAME = "gitee-pr-mcp"
DEFAULT_PROTOCOL_VERSION = "2025-06-18"
SHUTDOWN_GRACE_SECONDS = 0.1

_OPTIONAL_CAPABILITIES = ("prompts", "resources", "logging", "roots")
_PLACEHOLDER_FAMILIES = ("prompts/", "resources/", "logging/", "roots/")
_PLACEHOLDER_RESULTS: dict[str, dict[str, Any]] = {
    "prompts/list": {"prompts": []},
    "resources/list": {"resources": []},
    "resources/templates/list": {"resourceTemplates": []},
    "logging/list": {"logs": []},
    "roots/list": {"roots": []},
}


class GatewayState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    TERMINATED = "terminated"


def _default_tool_prefix(registry: InstanceRegistry) -> str | None:
    default = registry.default_instance()
    return default.key if default is not None else None


def _valid_request_id(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))


def _error_envelope(request_id: Any, error: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _placeholder_result(method: str) -> dict[str, Any]:
    """Fixed answers for the prompt/resource/logging/root families."""
    if method in _PLACEHOLDER_RESULTS:
        return copy.deepcopy(_PLACEHOLDER_RESULTS[method])
    family, _, action = method.partition("/")
    if action == "read":
        return {
            "contents": [{"uri": "error://unsupported", "text": f"Unsupported {family} read"}]
        }
    if action in ("get", "call"):
        return {
            "messages": [
                {
                    "role": "assistant",
                    "content": {"type": "text", "text": f"Unsupported {family} {action}"},
                }
            ]
        }
    return {}


def _loggable_result(result: Any) -> Any:
    # Tool text content may embed secrets inside a JSON string; keep the structured part only.
    if isinstance(result, dict) and "structuredContent" in result:
        return {
            "structuredContent": result["structuredContent"],
            "isError": result.get("isError", False),
        }
    return result


class GiteePRGateway:
    """MCP gateway exposing the ``pr``, ``token``, ``logs`` and ``set_log_dir`` tools."""

    def __init__(
        self,
        registry: InstanceRegistry,
        client: UpstreamClient,
        token_cache: TokenCache | None = None,
        operation_log: OperationLog | None = None,
        tool_prefix: str | None = None,
        project_name: str | None = None,
        shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.registry = registry
        self.client = client
        self.token_cache = token_cache if token_cache is not None else TokenCache(client)
        self.operation_log = operation_log if operation_log is not None else OperationLog()
        self.tool_prefix = tool_prefix or _default_tool_prefix(registry)
        self.project_name = project_name or None
        self.shutdown_grace = shutdown_grace

        self.state = GatewayState.UNINITIALIZED
        self.exit_delay: float | None = None

        self.orchestrator = WorkflowOrchestrator(client, self.token_cache)
        self.pr_tools = PRTools(registry, self.orchestrator, self.project_name)
        self.token_tools = TokenTools(registry, self.token_cache, self.project_name)
        self.log_tools = LogTools(self.operation_log, self.project_name)
        # set_log_dir is only offered when no directory was configured at startup.
        self.set_log_dir_enabled = self.operation_log.log_dir is None
        self.tools = self._build_tool_registry()

        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._rpc_initialize,
            "tools/list": self._rpc_tools_list,
            "tools/call": self._rpc_tools_call,
            "ping": self._rpc_ping,
            "shutdown": self._rpc_shutdown,
            "notifications/initialized": self._rpc_notification_initialized,
            "notifications/exit": self._rpc_notification_exit,
        }

    @classmethod
    def from_settings(
        cls, settings: Settings, client: UpstreamClient | None = None
    ) -> "GiteePRGateway":
        if client is None:
            client = GiteeClient(base_url=settings.base_url, timeout=settings.timeout)
        return cls(
            InstanceRegistry(settings.instances),
            client,
            operation_log=OperationLog(log_dir=settings.log_dir),
            tool_prefix=settings.tool_prefix,
            project_name=settings.project_name,
        )

    def _build_tool_registry(self) -> ToolRegistry:
        def name(tool_id: str) -> str:
            return prefixed_name(self.tool_prefix, tool_id)

        specs = [
            ToolSpec("pr", self.pr_tools.pr, self.pr_tools.descriptor(name("pr")), True),
            ToolSpec(
                "token", self.token_tools.token, self.token_tools.descriptor(name("token")), True
            ),
            ToolSpec("logs", self.log_tools.logs, self.log_tools.logs_descriptor(name("logs"))),
        ]
        if self.set_log_dir_enabled:
            specs.append(
                ToolSpec(
                    "set_log_dir",
                    self.log_tools.set_log_dir,
                    self.log_tools.set_log_dir_descriptor(name("set_log_dir")),
                )
            )
        return ToolRegistry(specs, prefix=self.tool_prefix)

    def server_info(self) -> dict[str, str]:
        return {"name": SERVER_NAME, "version": __version__}

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Handle one raw protocol line; returns the response envelope, if any."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            error = {"code": PARSE_ERROR, "message": f"Parse error: {e.msg}"}
            self.operation_log.record("(parse error)", {"line": line[:200]}, None, error)
            _gateway_log.warning("rpc_parse_error error=%s", e.msg)
            return _error_envelope(None, error)
        return await self.handle_message(message)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Dispatch one decoded envelope.

        Returns None for notifications, which never get a response. Malformed
        envelopes are always answered, with the request id when one can be
        extracted and ``null`` otherwise.
        """
        is_object = isinstance(message, dict)
        raw_id = message.get("id") if is_object else None
        request_id = raw_id if _valid_request_id(raw_id) else None
        method = message.get("method") if is_object else None
        method_name = method if isinstance(method, str) and method else "(invalid)"
        raw_params = message.get("params") if is_object else None

        try:
            params = self._validate_envelope(message)
        except ProtocolError as e:
            self.operation_log.record(method_name, raw_params, None, e.to_error())
            _gateway_log.warning("rpc_invalid_request error=%s", e.message)
            return _error_envelope(request_id, e.to_error())

        is_notification = "id" not in message or method_name.startswith("notifications/")
        result: Any = None
        error: GatewayError | None = None
        try:
            if self.state is GatewayState.TERMINATED and not is_notification:
                raise ProtocolError("Server is shutting down")
            result = await self._dispatch(method_name, params)
        except GatewayError as e:
            error = e
        except Exception as e:
            _gateway_log.exception(
                "rpc_internal_error method=%s", method_name, extra={"method": method_name}
            )
            error = InternalError(f"Internal error: {e}")

        self.operation_log.record(
            method_name,
            raw_params,
            _loggable_result(result),
            error.to_error() if error is not None else None,
        )

        if is_notification:
            return None
        if error is not None:
            _gateway_log.info(
                "rpc_error method=%s code=%s message=%s",
                method_name,
                error.code,
                error.message,
                extra={"method": method_name, "code": error.code},
            )
            return _error_envelope(request_id, error.to_error())
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _validate_envelope(self, message: Any) -> dict[str, Any]:
        if not isinstance(message, dict):
            raise ProtocolError("Invalid Request: expected a JSON object")
        if message.get("jsonrpc") != "2.0":
            raise ProtocolError("Invalid Request: unsupported JSON-RPC version")
        method = message.get("method")
        if not isinstance(method, str) or not method:
            raise ProtocolError("Invalid Request: missing method")
        if not _valid_request_id(message.get("id")):
            raise ProtocolError("Invalid Request: id must be a string, integer or null")
        params = message.get("params")
        if params is None:
            return {}
        if not isinstance(params, dict):
            raise ProtocolError("Invalid Request: params must be an object")
        return params

    async def _dispatch(self, method: str, params: dict[str, Any]) -> Any:
        handler = self._handlers.get(method)
        if handler is not None:
            return await handler(params)
        if method.startswith("notifications/"):
            return None
        if method.startswith(_PLACEHOLDER_FAMILIES):
            return _placeholder_result(method)
        raise MethodNotFoundError(f"Method not found: {method}")

    # ------------------------------------------------------------------
    # Method handlers
    # ------------------------------------------------------------------

    async def _rpc_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("capabilities")
        if not isinstance(requested, dict):
            requested = {}
        capabilities: dict[str, Any] = {"tools": {"listChanged": False}}
        for capability in _OPTIONAL_CAPABILITIES:
            if requested.get(capability):
                capabilities[capability] = {"listChanged": False}

        if self.state is GatewayState.UNINITIALIZED:
            self.state = GatewayState.INITIALIZED
        protocol_version = params.get("protocolVersion")
        return {
            "protocolVersion": (
                protocol_version
                if isinstance(protocol_version, str) and protocol_version
                else DEFAULT_PROTOCOL_VERSION
            ),
            "capabilities": capabilities,
            "serverInfo": self.server_info(),
        }

    async def _rpc_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        return {
            "tools": self.tools.descriptors(),
            "environment": {
                "tool_prefix": self.tool_prefix,
                "project_name": self.project_name,
                "multi_instance": self.registry.is_multi_instance,
                "repo_list": [instance.to_dict() for instance in self.registry],
                "serverInfo": self.server_info(),
            },
        }

    async def _rpc_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Missing tool name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        elif not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object")

        spec = self.tools.lookup(name.strip())
        instance = None
        if spec.needs_instance:
            instance = self.registry.resolve_for_call(arguments.get("repo"))
        _gateway_log.info(
            "tool_call tool=%s repo=%s",
            spec.name,
            instance.key if instance is not None else "(none)",
            extra={"tool": spec.name, "repo": instance.key if instance is not None else None},
        )
        return await spec.handler(instance, arguments)

    async def _rpc_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        return {"pong": True}

    async def _rpc_shutdown(self, params: dict[str, Any]) -> None:
        _ = params
        self.state = GatewayState.TERMINATED
        self.exit_delay = self.shutdown_grace
        _gateway_log.info("gateway_shutdown grace_seconds=%s", self.shutdown_grace)
        return None

    async def _rpc_notification_initialized(self, params: dict[str, Any]) -> None:
        _ = params
        return None

    async def _rpc_notification_exit(self, params: dict[str, Any]) -> None:
        _ = params
        self.state = GatewayState.TERMINATED
        self.exit_delay = 0.0
        _gateway_log.info("gateway_exit")
        return None

    async def prefetch_tokens(self) -> None:
        """Warm the token cache for every instance; failures are logged, not raised."""
        for instance in self.registry:
            try:
                await self.token_cache.get_token(instance)
            except GatewayError as e:
                _gateway_log.warning(
                    "token_prefetch_failed repo=%s error=%s",
                    instance.key,
                    e.message,
                    extra={"repo": instance.key},
                )


# ============================================================================
# Stdio transport
# ============================================================================


def _read_line(reader: TextIO) -> str:
    """Read one line, replacing bytes that are not valid UTF-8.

    Text streams backed by a byte buffer (``sys.stdin``) are read through the
    buffer so a damaged line reaches the parser instead of raising.
    """
    source = getattr(reader, "buffer", None)
    if source is None:
        return reader.readline()
    raw = source.readline()
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


async def serve_stdio(
    gateway: GiteePRGateway,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> None:
    """Read newline-delimited requests and write one response line per request.

    Lines are handled strictly in order. Returns at end of input, or once the
    gateway is terminated (after its exit delay).
    """
    reader = stdin if stdin is not None else sys.stdin
    writer = stdout if stdout is not None else sys.stdout

    def send(message: dict[str, Any]) -> None:
        writer.write(json.dumps(message, ensure_ascii=False, default=str) + "\n")
        writer.flush()

    while True:
        raw_line = await asyncio.to_thread(_read_line, reader)
        if not raw_line:
            _gateway_log.info("stdin_closed")
            break
        line = raw_line.strip()
        if not line:
            continue

        response = await gateway.handle_line(line)
        if response is not None:
            send(response)

        if gateway.state is GatewayState.TERMINATED:
            if gateway.exit_delay:
                await asyncio.sleep(gateway.exit_delay)
            break


async def run_gateway(
    gateway: GiteePRGateway,
    prefetch: bool = True,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> None:
    """Serve stdio while warming the token cache in the background."""
    prefetch_task = asyncio.ensure_future(gateway.prefetch_tokens()) if prefetch else None
    try:
        await serve_stdio(gateway, stdin, stdout)
    finally:
        if prefetch_task is not None and not prefetch_task.done():
            prefetch_task.cancel()


# ============================================================================
# Main Entry Point
# ============================================================================


def _install_signal_handlers(gateway: GiteePRGateway) -> None:
    def _terminate(signum: int, _frame: Any) -> None:
        signal_name = signal.Signals(signum).name
        _gateway_log.info("gateway_signal signal=%s", signal_name)
        gateway.operation_log.record(
            signal_name, {"signal": signal_name}, {"status": "shutting_down"}
        )
        logging.shutdown()
        # A blocking stdin read cannot be interrupted; leave without joining it.
        os._exit(0)

    signal.signal(signal.SIGTERM, _terminate)
    signal.signal(signal.SIGINT, _terminate)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Gitee pull-request MCP server (stdio)")
    parser.add_argument(
        "--env-file",
        help="Path to a .env file to load (default: search for .env from the working directory)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic log level; diagnostics go to stderr",
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for the JSON-lines operation log (overrides LOG_DIR)",
    )
    parser.add_argument(
        "--no-prefetch",
        action="store_true",
        help="Do not fetch access tokens at startup",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.env_file:
        if not os.path.isfile(args.env_file):
            print(f"ERROR: env file not found: {args.env_file}", file=sys.stderr)
            return 1
        load_dotenv(args.env_file)
    else:
        load_dotenv()

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    if args.log_dir:
        settings = dataclasses.replace(settings, log_dir=args.log_dir)

    try:
        gateway = GiteePRGateway.from_settings(settings)
    except OSError as e:
        print(f"ERROR: cannot use log directory {settings.log_dir}: {e}", file=sys.stderr)
        return 1
    _gateway_log.info(
        "gateway_start repos=%s tool_prefix=%s log_dir=%s",
        ",".join(gateway.registry.keys()),
        gateway.tool_prefix or "(none)",
        gateway.operation_log.log_dir or "(unset)",
    )
    _install_signal_handlers(gateway)
    asyncio.run(run_gateway(gateway, prefetch=not args.no_prefetch))
    return 0


if __name__ == "__main__":
    sys.exit(main())
