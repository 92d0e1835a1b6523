"""Provisioner Lambda handler - issues OpenVPN client profiles over SSH.

Routes:
    POST /connect, POST /api/generate  provision and download a profile
    GET /api/servers                   list configured gateways
    $connect / $disconnect / $default  WebSocket progress channel
    scheduled event                    progress channel heartbeat
"""

import paramiko

from ovpn_gateway.lib.config import GatewayConfig
from ovpn_gateway.lib.errors import ProvisioningError
from ovpn_gateway.lib.logging_config import LOGGER
from ovpn_gateway.lib.models import ServerTarget
from ovpn_gateway.lib.progress import ApiGatewayWebSocketSubscriber, BroadcastProgressSink
from ovpn_gateway.lib.remote import RemoteSession, open_session
from ovpn_gateway.lib.ssm_client import SSMClient
from ovpn_gateway.lib.workflow import ProvisioningWorkflow

from ._types import APIGatewayProxyEventV2, APIGatewayProxyResponseV2, LambdaContext, ServerSummary
from .request_parser import extract_fields, parse_body
from .responses import empty_response, json_response, profile_response

GENERATE_ROUTES = {"POST /connect", "POST /api/generate"}
SERVERS_ROUTE = "GET /api/servers"
PROGRESS_FLUSH_TIMEOUT_SECONDS = 5.0

# Process-wide progress channel, reused across warm invocations
PROGRESS = BroadcastProgressSink()


def _get_secrets_client(region: str) -> SSMClient:
    """Get secret store client (extracted for testing)."""
    return SSMClient(region=region)


def _open_session(
    target: ServerTarget, private_key: paramiko.PKey, timeout: float
) -> RemoteSession:
    """Open SSH session to a gateway (extracted for testing)."""
    return open_session(target, private_key, timeout)


def _route_key(event: APIGatewayProxyEventV2) -> str:
    request_context = event.get("requestContext", {})
    http = request_context.get("http")
    if http:
        # HTTP API catch-all integrations report "$default" as the route
        route_key = event.get("routeKey", "")
        if route_key and route_key != "$default":
            return route_key
        return f"{http.get('method', '')} {http.get('path', event.get('rawPath', ''))}"
    return request_context.get("routeKey") or event.get("routeKey", "")


def _handle_generate(event: APIGatewayProxyEventV2) -> APIGatewayProxyResponseV2:
    fields = extract_fields(parse_body(event))
    LOGGER.info(
        "Request: server=%s customerName=%s customerNetwork=%s azureSubnet=%s",
        fields["server"],
        fields["customer_name"],
        fields["customer_network"],
        fields["azure_subnet"],
    )

    config = GatewayConfig.from_env()
    workflow = ProvisioningWorkflow(
        config=config,
        secrets=_get_secrets_client(config.region),
        progress=PROGRESS,
        session_factory=_open_session,
    )
    try:
        result = workflow.provision(**fields)
    finally:
        # Lambda freezes the process once the handler returns
        PROGRESS.flush(PROGRESS_FLUSH_TIMEOUT_SECONDS)
    LOGGER.info("Profile generated for %s", result.customer_name)
    return profile_response(result.filename, result.profile)


def _handle_servers() -> APIGatewayProxyResponseV2:
    config = GatewayConfig.from_env()
    servers: list[ServerSummary] = [
        {
            "key": target.key,
            "name": target.name,
            "ipPublic": target.public_host,
            "ipPrivate": target.host,
        }
        for target in config.servers.values()
    ]
    return json_response(200, servers)


def _handle_ws_connect(event: APIGatewayProxyEventV2) -> APIGatewayProxyResponseV2:
    request_context = event.get("requestContext", {})
    connection_id = request_context.get("connectionId", "")
    if not connection_id:
        return empty_response(400)
    domain = request_context.get("domainName", "")
    endpoint_url = f"https://{domain}/{request_context.get('stage', '')}"
    PROGRESS.subscribe(ApiGatewayWebSocketSubscriber(connection_id, endpoint_url))
    LOGGER.info("Progress subscriber connected: %s (%d active)", connection_id, len(PROGRESS))
    return empty_response(200)


def _handle_ws_disconnect(event: APIGatewayProxyEventV2) -> APIGatewayProxyResponseV2:
    connection_id = event.get("requestContext", {}).get("connectionId", "")
    PROGRESS.unsubscribe(connection_id)
    LOGGER.info("Progress subscriber disconnected: %s", connection_id)
    return empty_response(200)


def _handle_ws_message(event: APIGatewayProxyEventV2) -> APIGatewayProxyResponseV2:
    """Any client message counts as a pong; greet it so clients know the channel is live."""
    connection_id = event.get("requestContext", {}).get("connectionId", "")
    PROGRESS.mark_alive(connection_id)
    return json_response(200, {"message": "Connected to WebSocket", "type": "success"})


def handler(event: APIGatewayProxyEventV2, context: LambdaContext) -> APIGatewayProxyResponseV2:
    """Dispatch API Gateway and scheduled events to route handlers.

    Provisioning flow:
    1. Parse and validate request fields (no remote access on failure)
    2. Fetch SSH key from the secret store and open one SSH session
    3. Revoke/clean previous state, issue certificate, configure routing
    4. Fetch artifacts and return the rendered .ovpn profile
    """
    if event.get("source") == "aws.events":
        removed = PROGRESS.heartbeat()
        return json_response(200, {"pruned": len(removed), "active": len(PROGRESS)})

    route_key = _route_key(event)
    try:
        if route_key in GENERATE_ROUTES:
            return _handle_generate(event)
        if route_key == SERVERS_ROUTE:
            return _handle_servers()
        if route_key == "$connect":
            return _handle_ws_connect(event)
        if route_key == "$disconnect":
            return _handle_ws_disconnect(event)
        if route_key == "$default":
            return _handle_ws_message(event)
    except ProvisioningError as e:
        LOGGER.error("%s failed: %s (%s)", route_key, e.message, e.code)
        return json_response(e.status_code, e.to_payload())
    except Exception:
        LOGGER.exception("Unhandled error on %s", route_key)
        return json_response(
            500, {"error": "InternalError", "message": "Internal error while generating profile"}
        )

    return json_response(404, {"error": "NotFound", "message": f"No route for {route_key}"})
