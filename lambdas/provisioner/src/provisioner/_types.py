"""Type definitions for provisioner Lambda."""

from typing import NotRequired, TypedDict


class HTTPContext(TypedDict, total=False):
    method: str
    path: str
    sourceIp: str


class RequestContext(TypedDict, total=False):
    """Request context from API Gateway (HTTP API v2 or WebSocket API)."""

    http: HTTPContext
    routeKey: str
    eventType: str
    connectionId: str
    domainName: str
    stage: str
    requestId: str


class APIGatewayProxyEventV2(TypedDict, total=False):
    """API Gateway event (partial, provisioner-relevant fields).

    Also covers WebSocket route events, which carry the route in
    ``requestContext.routeKey``, and EventBridge scheduled events, which
    carry ``source``.
    """

    routeKey: str
    rawPath: str
    headers: dict[str, str]
    body: str
    isBase64Encoded: bool
    requestContext: RequestContext
    source: str


class APIGatewayProxyResponseV2(TypedDict):
    """API Gateway HTTP API v2 response."""

    statusCode: int
    headers: NotRequired[dict[str, str]]
    body: NotRequired[str]


class LambdaContext:
    """AWS Lambda context object stub for typing."""

    function_name: str
    memory_limit_in_mb: int
    invoked_function_arn: str
    aws_request_id: str


class ServerSummary(TypedDict):
    """Entry of the ``GET /api/servers`` listing."""

    key: str
    name: str
    ipPublic: str
    ipPrivate: str
