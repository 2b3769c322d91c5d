from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

from boxgen.domain.models import Handler, ServiceGroup, group_services
from boxgen.emitters.rendering import (
    GENERATED_BY,
    RenderedFile,
    dump_yaml,
    import_path,
    relative_posix,
    render_template,
    service_name,
    write_files,
)
from boxgen.orchestrator.config import BuildConfig

logger = logging.getLogger(__name__)

SERVER_REQUIREMENTS = ("flask>=3,<4", "gunicorn>=22")

HEALTH_PATH = "/health"

_PARAM_RE = re.compile(r"\{([^{}/]+)\}")

SERVER_TEMPLATE = '''\
# Code generated by box build system. DO NOT EDIT.
import logging
import os

from flask import Flask, request

{% for imp in imports %}
import {{ imp.module }} as {{ imp.alias }}
{% endfor %}

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger("{{ service }}")

app = Flask(__name__)


def _forward(handler):
    def view(**_path_params):
        return handler(request)

    view.__name__ = handler.__name__
    return view


@app.get("{{ health_path }}")
def health():
    return "OK", 200


{% for r in routes %}
app.add_url_rule("{{ r.rule }}", "{{ r.endpoint }}", _forward({{ r.ref }}), methods=["{{ r.method }}"])
{% endfor %}

logger.info("Container service initialized: %s (%d routes)", "{{ service }}", {{ routes|length }})

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "{{ port }}")))
'''

REQUIREMENTS_TEMPLATE = """\
# {{ generated_by }}
# Root module: {{ module_name }} (installed by the Dockerfile)
{% for req in requirements %}
{{ req }}
{% endfor %}
"""

DOCKERFILE_TEMPLATE = """\
# Multi-stage Dockerfile for {{ service }} service
# {{ generated_by }}
# Build context: the project root ({{ module_name }})

# Stage 1: Build
FROM python:{{ python_version }}-slim AS builder

ENV PIP_NO_CACHE_DIR=1 PIP_DISABLE_PIP_VERSION_CHECK=1

WORKDIR /build

RUN python -m venv /opt/venv
ENV PATH="/opt/venv/bin:$PATH"

COPY . .
RUN pip install . && pip install -r {{ package_dir }}/requirements.txt

# Stage 2: Runtime
FROM python:{{ python_version }}-slim

ENV PATH="/opt/venv/bin:$PATH" PYTHONPATH=/app PYTHONUNBUFFERED=1

WORKDIR /app

COPY --from=builder /opt/venv /opt/venv
COPY --from=builder /build /app

# Use non-root user
RUN useradd --uid 1000 --user-group --no-create-home appuser && \\
    chown -R appuser:appuser /app

USER appuser

EXPOSE {{ port }}

HEALTHCHECK --interval=30s --timeout=3s --start-period=5s --retries=3 \\
    CMD python -c "import urllib.request; urllib.request.urlopen('http://localhost:{{ port }}{{ health_path }}')" || exit 1

CMD ["gunicorn", "--bind", "0.0.0.0:{{ port }}", "--workers", "1", "--threads", "{{ concurrency }}", "--timeout", "{{ timeout }}", "--chdir", "/app/{{ package_dir }}", "main:app"]
"""

DEPLOY_TEMPLATE = """\
#!/bin/bash
# Deploy script for {{ service }} container
# {{ generated_by }}

set -e

SERVICE_NAME="{{ service }}"
REGION="{{ region }}"

PROJECT_ID=$(gcloud config get-value project)

if [ -z "$PROJECT_ID" ]; then
    echo "Error: GCP project not set. Run: gcloud config set project PROJECT_ID"
    exit 1
fi

echo "Deploying container service: $SERVICE_NAME to project: $PROJECT_ID"

cd "$(dirname "$0")"

gcloud builds submit \\
    --config=cloudbuild.yaml \\
    --substitutions=SHORT_SHA=$(git rev-parse --short HEAD) \\
    {{ root_path }}

echo "Service deployed successfully!"
gcloud run services describe "$SERVICE_NAME" --region="$REGION" --format='value(status.url)'
"""


def flask_rule(path: str) -> str:
    """/users/{id} -> /users/<id>, /users/{user-id} -> /users/<user_id>"""
    return _PARAM_RE.sub(lambda m: f"<{_param_name(m.group(1))}>", path)


def _param_name(name: str) -> str:
    # werkzeug converter arguments must be identifiers
    name = re.sub(r"\W", "_", name, flags=re.ASCII)
    return "_" + name if name[0].isdigit() else name


def module_alias(module: str) -> str:
    return "_" + re.sub(r"\W", "_", module)


def service_concurrency(group: ServiceGroup, config: BuildConfig) -> int:
    """Most restrictive explicit value in the group, or the configured default."""
    explicit = [h.concurrency for h in group.handlers if h.concurrency is not None]
    return min(explicit) if explicit else config.container_concurrency


def service_timeout(group: ServiceGroup, config: BuildConfig) -> int:
    """Longest explicit handler timeout in the group, or the configured default."""
    explicit = [h.timeout_seconds for h in group.handlers if h.timeout_seconds]
    return max(explicit) if explicit else config.default_timeout_seconds


def _imports(handlers: Iterable[Handler]) -> list[dict[str, str]]:
    seen: dict[str, str] = {}
    for h in handlers:
        mod = import_path(h)
        seen.setdefault(mod, module_alias(mod))
    return [{"module": m, "alias": a} for m, a in sorted(seen.items())]


def _routed(handlers: Iterable[Handler]) -> list[Handler]:
    routed = []
    for h in handlers:
        if h.route is None:
            logger.warning("Skipping %s (%s:%d): no route", h.name, h.file_path, h.line)
            continue
        routed.append(h)
    return routed


def _routes(handlers: Iterable[Handler]) -> list[dict[str, str]]:
    out = []
    for h in handlers:
        alias = module_alias(import_path(h))
        out.append(
            {
                "rule": flask_rule(h.route.path),
                "endpoint": f"{alias}__{h.name}",
                "ref": f"{alias}.{h.name}",
                "method": h.route.method,
            }
        )
    return out


def _cloudbuild(group: ServiceGroup, config: BuildConfig, dockerfile: str) -> dict:
    service = service_name(group.name)
    image = f"gcr.io/$PROJECT_ID/{service}"
    return {
        "steps": [
            {
                "name": "gcr.io/cloud-builders/docker",
                "args": [
                    "build",
                    "-t", f"{image}:$SHORT_SHA",
                    "-t", f"{image}:latest",
                    "-f", dockerfile,
                    ".",
                ],
            },
            {"name": "gcr.io/cloud-builders/docker", "args": ["push", f"{image}:$SHORT_SHA"]},
            {"name": "gcr.io/cloud-builders/docker", "args": ["push", f"{image}:latest"]},
            {
                "name": "gcr.io/google.com/cloudsdktool/cloud-sdk",
                "entrypoint": "gcloud",
                "args": [
                    "run",
                    "deploy",
                    service,
                    f"--image={image}:$SHORT_SHA",
                    f"--region={config.region}",
                    "--platform=managed",
                    f"--port={config.container_port}",
                    f"--concurrency={service_concurrency(group, config)}",
                    f"--timeout={service_timeout(group, config)}",
                    "--allow-unauthenticated",
                    f"--set-env-vars=ENVIRONMENT={config.environment}",
                    f"--set-secrets=DATABASE_URL=database-url-{config.environment}:latest",
                ],
            },
        ],
        "images": [f"{image}:$SHORT_SHA", f"{image}:latest"],
        "options": {"machineType": "E2_HIGHCPU_8", "logging": "CLOUD_LOGGING_ONLY"},
    }


def render_service(group: ServiceGroup, config: BuildConfig) -> list[RenderedFile]:
    """All files of one Cloud Run service package, paths relative to the containers dir."""
    service = service_name(group.name)
    package_dir = relative_posix(config.containers_dir / service, config.source_root)
    root_path = relative_posix(config.source_root, config.containers_dir / service)
    concurrency = service_concurrency(group, config)

    return [
        RenderedFile(
            f"{service}/main.py",
            render_template(
                SERVER_TEMPLATE,
                service=service,
                imports=_imports(group.handlers),
                routes=_routes(group.handlers),
                health_path=HEALTH_PATH,
                port=config.container_port,
            ),
        ),
        RenderedFile(
            f"{service}/requirements.txt",
            render_template(
                REQUIREMENTS_TEMPLATE,
                module_name=config.module_name,
                requirements=SERVER_REQUIREMENTS,
            ),
        ),
        RenderedFile(
            f"{service}/Dockerfile",
            render_template(
                DOCKERFILE_TEMPLATE,
                service=service,
                module_name=config.module_name,
                python_version=config.python_version,
                package_dir=package_dir,
                port=config.container_port,
                health_path=HEALTH_PATH,
                concurrency=concurrency,
                timeout=service_timeout(group, config),
            ),
        ),
        RenderedFile(
            f"{service}/cloudbuild.yaml",
            dump_yaml(
                _cloudbuild(group, config, f"{package_dir}/Dockerfile"),
                header=f"# Cloud Build configuration for {service}\n# {GENERATED_BY}\n\n",
            ),
        ),
        RenderedFile(
            f"{service}/deploy.sh",
            render_template(
                DEPLOY_TEMPLATE,
                service=service,
                region=config.region,
                root_path=root_path,
            ),
            executable=True,
        ),
    ]


def render_containers(handlers: Iterable[Handler], config: BuildConfig) -> list[RenderedFile]:
    files: list[RenderedFile] = []
    for group in group_services(_routed(handlers)):
        files.extend(render_service(group, config))
    return files


def emit_containers(handlers: Iterable[Handler], config: BuildConfig) -> list[Path]:
    handlers = _routed(handlers)
    groups = group_services(handlers)
    if not groups:
        logger.info("No container handlers to generate")
        return []

    for group in groups:
        logger.info(
            "Generating container service %s (%d handlers)",
            service_name(group.name),
            len(group.handlers),
        )

    written = write_files(config.containers_dir, render_containers(handlers, config))
    logger.info("Generated %d container services in %s", len(groups), config.containers_dir)
    return written
