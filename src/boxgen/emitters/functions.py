from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from boxgen.domain.models import DeploymentTarget, Handler, filter_target
from boxgen.emitters.rendering import (
    GENERATED_BY,
    RenderedFile,
    dump_yaml,
    function_name,
    import_path,
    platform_memory,
    relative_posix,
    render_template,
    write_files,
)
from boxgen.orchestrator.config import BuildConfig

logger = logging.getLogger(__name__)

FUNCTIONS_FRAMEWORK_REQUIREMENT = "functions-framework>=3.5,<4"

ENTRYPOINT_TEMPLATE = '''\
# Code generated by box build system. DO NOT EDIT.
import logging
import os

import functions_framework

from {{ module }} import {{ name }} as _handler

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger("{{ function_name }}")

if not os.environ.get("DATABASE_URL"):
    logger.warning("DATABASE_URL environment variable is not set")

logger.info("Cloud function initialized: %s", "{{ function_name }}")


@functions_framework.http
def {{ name }}(request):
    return _handler(request)
'''

REQUIREMENTS_TEMPLATE = """\
# {{ generated_by }}
# Root module: {{ module_name }}
{{ framework }}
{{ root_path }}
"""

DEPLOY_TEMPLATE = """\
#!/bin/bash
# Deploy script for {{ function_name }}
# {{ generated_by }}

set -e

FUNCTION_NAME="{{ function_name }}"
REGION="{{ region }}"
ENTRY_POINT="{{ entry_point }}"

PROJECT_ID=$(gcloud config get-value project)

if [ -z "$PROJECT_ID" ]; then
    echo "Error: GCP project not set. Run: gcloud config set project PROJECT_ID"
    exit 1
fi

echo "Deploying function: $FUNCTION_NAME to project: $PROJECT_ID"

gcloud functions deploy "$FUNCTION_NAME" \\
    --gen2 \\
    --runtime={{ runtime }} \\
    --region="$REGION" \\
    --source=. \\
    --entry-point="$ENTRY_POINT" \\
    --memory={{ memory }} \\
    --timeout={{ timeout }}s \\
    --max-instances={{ max_instances }} \\
    --trigger-http \\
    --allow-unauthenticated \\
    --set-secrets="DATABASE_URL=database-url-{{ environment }}:latest"

echo "Function deployed successfully!"
echo "URL: https://$REGION-$PROJECT_ID.cloudfunctions.net/$FUNCTION_NAME"
"""


def function_memory(handler: Handler, config: BuildConfig) -> str:
    return platform_memory(handler.memory, config.default_memory_mb)


def function_timeout(handler: Handler, config: BuildConfig) -> int:
    return handler.timeout_seconds or config.default_timeout_seconds


def render_function(handler: Handler, config: BuildConfig) -> list[RenderedFile]:
    """All files of one function package, paths relative to the functions dir."""
    name = function_name(handler)
    memory = function_memory(handler, config)
    timeout = function_timeout(handler, config)

    root_path = relative_posix(config.source_root, config.functions_dir / name)
    if not root_path.startswith("."):
        root_path = "./" + root_path

    manifest = {
        "name": name,
        "runtime": config.function_runtime,
        "entryPoint": handler.name,
        "availableMemory": memory,
        "timeout": f"{timeout}s",
        "maxInstances": config.function_max_instances,
        "environmentVariables": {"ENVIRONMENT": config.environment},
        "httpsTrigger": {"securityLevel": "SECURE_ALWAYS"},
    }

    return [
        RenderedFile(
            f"{name}/main.py",
            render_template(
                ENTRYPOINT_TEMPLATE,
                module=import_path(handler),
                name=handler.name,
                function_name=name,
            ),
        ),
        RenderedFile(
            f"{name}/requirements.txt",
            render_template(
                REQUIREMENTS_TEMPLATE,
                module_name=config.module_name,
                framework=FUNCTIONS_FRAMEWORK_REQUIREMENT,
                root_path=root_path,
            ),
        ),
        RenderedFile(
            f"{name}/function.yaml",
            dump_yaml(manifest, header=f"# GCP Cloud Function configuration\n# {GENERATED_BY}\n\n"),
        ),
        RenderedFile(
            f"{name}/deploy.sh",
            render_template(
                DEPLOY_TEMPLATE,
                function_name=name,
                region=config.region,
                entry_point=handler.name,
                runtime=config.function_runtime,
                memory=memory,
                timeout=timeout,
                max_instances=config.function_max_instances,
                environment=config.environment,
            ),
            executable=True,
        ),
    ]


def render_functions(handlers: Iterable[Handler], config: BuildConfig) -> list[RenderedFile]:
    files: list[RenderedFile] = []
    for h in filter_target(handlers, DeploymentTarget.FUNCTION):
        files.extend(render_function(h, config))
    return files


def emit_functions(handlers: Iterable[Handler], config: BuildConfig) -> list[Path]:
    functions = filter_target(handlers, DeploymentTarget.FUNCTION)
    if not functions:
        logger.info("No function handlers to generate")
        return []

    for h in functions:
        logger.info("Generating cloud function %s (%s)", function_name(h), h.route)

    written = write_files(config.functions_dir, render_functions(functions, config))
    logger.info("Generated %d cloud functions in %s", len(functions), config.functions_dir)
    return written
