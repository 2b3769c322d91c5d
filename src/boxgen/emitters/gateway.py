from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Iterable

from boxgen.domain.models import AuthMode, DeploymentTarget, Handler, RateLimit
from boxgen.emitters.rendering import (
    GENERATED_BY,
    RenderedFile,
    backend_address,
    dump_yaml,
    dump_yaml_documents,
    render_template,
    write_files,
)
from boxgen.orchestrator.config import BuildConfig

logger = logging.getLogger(__name__)

OPENAPI_VERSION = "3.0.0"
API_VERSION = "1.0.0"

BEARER_SCHEME = "bearerAuth"

RESPONSE_DESCRIPTIONS = {
    "200": "Successful response",
    "201": "Resource created successfully",
    "400": "Bad request",
    "401": "Unauthorized - missing or invalid authentication",
    "403": "Forbidden - insufficient permissions",
    "429": "Too many requests - rate limit exceeded",
    "500": "Internal server error",
}

DEPLOY_TEMPLATE = """\
#!/bin/bash
# Deploy script for API Gateway
# {{ generated_by }}

set -e

API_NAME="{{ api_name }}"
REGION="{{ region }}"

PROJECT_ID=$(gcloud config get-value project)

if [ -z "$PROJECT_ID" ]; then
    echo "Error: GCP project not set. Run: gcloud config set project PROJECT_ID"
    exit 1
fi

cd "$(dirname "$0")"

echo "Deploying API Gateway: $API_NAME to project: $PROJECT_ID"

echo "Creating API..."
gcloud api-gateway apis describe "$API_NAME" --project="$PROJECT_ID" >/dev/null 2>&1 || \\
  gcloud api-gateway apis create "$API_NAME" --project="$PROJECT_ID"

echo "Creating API config..."
CONFIG_ID="$API_NAME-config-$(date +%s)"
gcloud api-gateway api-configs create "$CONFIG_ID" \\
  --api="$API_NAME" \\
  --openapi-spec=openapi.yaml \\
  --project="$PROJECT_ID" \\
  --backend-auth-service-account="api-gateway@$PROJECT_ID.iam.gserviceaccount.com"

echo "Creating/updating gateway..."
if gcloud api-gateway gateways describe "$API_NAME-gateway" \\
    --location="$REGION" --project="$PROJECT_ID" >/dev/null 2>&1; then
  gcloud api-gateway gateways update "$API_NAME-gateway" \\
    --api="$API_NAME" \\
    --api-config="$CONFIG_ID" \\
    --location="$REGION" \\
    --project="$PROJECT_ID"
else
  gcloud api-gateway gateways create "$API_NAME-gateway" \\
    --api="$API_NAME" \\
    --api-config="$CONFIG_ID" \\
    --location="$REGION" \\
    --project="$PROJECT_ID"
fi

echo "API Gateway deployed successfully!"
gcloud api-gateway gateways describe "$API_NAME-gateway" \\
  --location="$REGION" \\
  --project="$PROJECT_ID" \\
  --format="value(defaultHostname)"
"""


def quota_metric(handler: Handler) -> str:
    return f"{handler.name}-quota"


def per_minute(rate: RateLimit) -> int:
    """API Gateway quotas are per minute; longer windows are spread evenly, rounding up."""
    return max(1, math.ceil(rate.count * 60 / rate.period.seconds))


def build_parameters(handler: Handler) -> list[dict[str, Any]]:
    return [
        {"name": p, "in": "path", "required": True, "schema": {"type": "string"}}
        for p in handler.route.path_params
    ]


def build_responses(handler: Handler) -> dict[str, dict[str, str]]:
    codes = ["200", "400", "500"]
    if handler.route.method == "POST":
        codes.append("201")
    if handler.auth is not AuthMode.NONE:
        codes.extend(["401", "403"])
    if handler.rate_limit is not None:
        codes.append("429")
    return {code: {"description": RESPONSE_DESCRIPTIONS[code]} for code in sorted(codes)}


def build_backend(handler: Handler, config: BuildConfig) -> dict[str, Any]:
    backend: dict[str, Any] = {
        "address": backend_address(handler, config.project_id, config.region)
    }
    if handler.target is DeploymentTarget.CONTAINER:
        backend["path_translation"] = "APPEND_PATH_TO_ADDRESS"
    if handler.timeout_seconds:
        backend["deadline"] = float(handler.timeout_seconds)
    return backend


def build_operation(handler: Handler, config: BuildConfig) -> dict[str, Any]:
    op: dict[str, Any] = {
        "operationId": handler.name,
        "summary": str(handler.route),
        "tags": [handler.group_name],
    }
    if handler.auth is not AuthMode.NONE:
        op["security"] = [{BEARER_SCHEME: []}]

    params = build_parameters(handler)
    if params:
        op["parameters"] = params

    op["responses"] = build_responses(handler)
    op["x-google-backend"] = build_backend(handler, config)

    if handler.rate_limit is not None:
        op["x-google-quota"] = {"metricCosts": {quota_metric(handler): 1}}
    return op


def _management(handlers: list[Handler]) -> dict[str, Any]:
    metrics = []
    limits = []
    for h in sorted(handlers, key=lambda h: h.name):
        metric = quota_metric(h)
        metrics.append(
            {
                "name": metric,
                "displayName": f"{h.name} requests",
                "valueType": "INT64",
                "metricKind": "DELTA",
            }
        )
        limits.append(
            {
                "name": f"{h.name}-limit",
                "metric": metric,
                "unit": "1/min/{project}",
                "values": {"STANDARD": per_minute(h.rate_limit)},
            }
        )
    return {"metrics": metrics, "quota": {"limits": limits}}


def build_openapi(handlers: Iterable[Handler], config: BuildConfig) -> dict[str, Any]:
    """
    Build the OpenAPI document for every routed handler.

    Operations are grouped by path, not by method. Paths, methods, tags and
    response codes are all emitted in sorted order so identical input always
    serializes to identical bytes.
    """
    handlers = [h for h in handlers if h.route is not None]

    # first declared handler keeps a duplicated (method, path)
    by_path: dict[str, dict[str, Handler]] = {}
    for h in handlers:
        by_path.setdefault(h.route.path, {}).setdefault(h.route.method.lower(), h)
    handlers = [h for h in handlers if by_path[h.route.path][h.route.method.lower()] is h]

    doc: dict[str, Any] = {
        "openapi": OPENAPI_VERSION,
        "info": {
            "title": config.api_name,
            "description": "API specification generated from box handler annotations",
            "version": API_VERSION,
        },
        "servers": [
            {
                "url": f"https://{config.region}-{config.project_id}.gateway.dev",
                "description": "API Gateway",
            }
        ],
    }

    if any(h.auth is not AuthMode.NONE for h in handlers):
        doc["components"] = {
            "securitySchemes": {
                BEARER_SCHEME: {
                    "type": "http",
                    "scheme": "bearer",
                    "bearerFormat": "JWT",
                    "description": "JWT Bearer token authentication",
                }
            }
        }

    tags = sorted({h.group_name for h in handlers})
    if tags:
        doc["tags"] = [{"name": t, "description": f"{t} endpoints"} for t in tags]

    doc["paths"] = {
        path: {
            method: build_operation(by_path[path][method], config)
            for method in sorted(by_path[path])
        }
        for path in sorted(by_path)
    }

    limited = [h for h in handlers if h.rate_limit is not None]
    if limited:
        doc["x-google-management"] = _management(limited)

    return doc


def build_gateway_resources(config: BuildConfig) -> list[dict[str, Any]]:
    """Config Connector resources for the API, its config and the gateway."""
    api = config.api_name
    project_ref = {"external": config.project_id}
    return [
        {
            "apiVersion": "apigateway.cnrm.cloud.google.com/v1beta1",
            "kind": "ApiGatewayAPI",
            "metadata": {"name": api},
            "spec": {"projectRef": project_ref},
        },
        {
            "apiVersion": "apigateway.cnrm.cloud.google.com/v1beta1",
            "kind": "ApiGatewayAPIConfig",
            "metadata": {"name": f"{api}-config"},
            "spec": {
                "projectRef": project_ref,
                "apiRef": {"name": api},
                "openapiDocuments": [{"document": {"path": "openapi.yaml"}}],
                "gatewayServiceAccount": {"serviceAccountRef": {"name": "api-gateway-sa"}},
            },
        },
        {
            "apiVersion": "apigateway.cnrm.cloud.google.com/v1beta1",
            "kind": "ApiGatewayGateway",
            "metadata": {"name": f"{api}-gateway"},
            "spec": {
                "projectRef": project_ref,
                "location": config.region,
                "apiConfigRef": {"name": f"{api}-config"},
            },
        },
    ]


def render_gateway(handlers: Iterable[Handler], config: BuildConfig) -> list[RenderedFile]:
    return [
        RenderedFile(
            "openapi.yaml",
            dump_yaml(
                build_openapi(handlers, config),
                header=f"# OpenAPI 3.0 specification\n# {GENERATED_BY}\n# DO NOT EDIT\n\n",
            ),
        ),
        RenderedFile(
            "gateway-config.yaml",
            dump_yaml_documents(
                build_gateway_resources(config),
                header=f"# GCP API Gateway configuration\n# {GENERATED_BY}\n\n",
            ),
        ),
        RenderedFile(
            "deploy.sh",
            render_template(DEPLOY_TEMPLATE, api_name=config.api_name, region=config.region),
            executable=True,
        ),
    ]


def emit_gateway(handlers: Iterable[Handler], config: BuildConfig) -> list[Path]:
    handlers = list(handlers)
    logger.info("Generating API Gateway configuration for %d handlers", len(handlers))
    written = write_files(config.gateway_dir, render_gateway(handlers, config))
    logger.info("Generated API Gateway configuration in %s", config.gateway_dir)
    return written
