from datetime import timedelta
from pathlib import Path

import yaml

from boxgen.domain.models import (
    AuthMode,
    DeploymentTarget,
    Handler,
    RateLimit,
    RatePeriod,
    Route,
)
from boxgen.emitters.gateway import per_minute, render_gateway
from boxgen.orchestrator.config import BuildConfig


def config_for(tmp_path: Path) -> BuildConfig:
    return BuildConfig(project_id="my-proj", module_name="myapp", output_dir=tmp_path / "build")


def sample_handlers() -> list[Handler]:
    return [
        Handler(
            name="get_user",
            package="users",
            target=DeploymentTarget.CONTAINER,
            route=Route("GET", "/users/{id}"),
            timeout=timedelta(seconds=30),
        ),
        Handler(
            name="create_user",
            package="accounts",
            target=DeploymentTarget.FUNCTION,
            route=Route("POST", "/users"),
            auth=AuthMode.REQUIRED,
            rate_limit=RateLimit(count=100, period=RatePeriod.MINUTE, raw="100/minute"),
        ),
        Handler(
            name="list_users",
            package="accounts",
            target=DeploymentTarget.FUNCTION,
            route=Route("GET", "/users"),
        ),
    ]


def load(files, path):
    return next(f for f in files if f.path == path)


def openapi(handlers, tmp_path):
    return yaml.safe_load(load(render_gateway(handlers, config_for(tmp_path)), "openapi.yaml").content)


def test_paths_methods_and_tags_are_sorted(tmp_path: Path):
    doc = openapi(sample_handlers(), tmp_path)

    assert list(doc["paths"]) == ["/users", "/users/{id}"]
    assert list(doc["paths"]["/users"]) == ["get", "post"]
    assert [t["name"] for t in doc["tags"]] == ["accounts", "users"]


def test_security_only_where_auth_is_set(tmp_path: Path):
    doc = openapi(sample_handlers(), tmp_path)
    users = doc["paths"]["/users"]

    assert users["post"]["security"] == [{"bearerAuth": []}]
    assert "security" not in users["get"]
    assert doc["components"]["securitySchemes"]["bearerAuth"]["scheme"] == "bearer"


def test_no_security_scheme_without_auth(tmp_path: Path):
    doc = openapi(sample_handlers()[2:], tmp_path)
    assert "components" not in doc


def test_responses_extend_with_method_auth_and_rate_limit(tmp_path: Path):
    doc = openapi(sample_handlers(), tmp_path)

    post = doc["paths"]["/users"]["post"]["responses"]
    assert list(post) == ["200", "201", "400", "401", "403", "429", "500"]

    get = doc["paths"]["/users"]["get"]["responses"]
    assert list(get) == ["200", "400", "500"]


def test_path_parameters_are_required_strings(tmp_path: Path):
    op = openapi(sample_handlers(), tmp_path)["paths"]["/users/{id}"]["get"]
    assert op["parameters"] == [
        {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}
    ]
    assert op["operationId"] == "get_user"
    assert op["tags"] == ["users"]


def test_backend_addresses_per_target(tmp_path: Path):
    doc = openapi(sample_handlers(), tmp_path)

    fn = doc["paths"]["/users"]["get"]["x-google-backend"]
    assert fn == {"address": "https://us-central1-my-proj.cloudfunctions.net/list-users"}

    run = doc["paths"]["/users/{id}"]["get"]["x-google-backend"]
    assert run["address"] == "https://users-us-central1.run.app"
    assert run["path_translation"] == "APPEND_PATH_TO_ADDRESS"
    assert run["deadline"] == 30.0


def test_quota_only_when_rate_limited(tmp_path: Path):
    doc = openapi(sample_handlers(), tmp_path)

    post = doc["paths"]["/users"]["post"]
    assert post["x-google-quota"] == {"metricCosts": {"create_user-quota": 1}}
    assert "x-google-quota" not in doc["paths"]["/users"]["get"]

    limits = doc["x-google-management"]["quota"]["limits"]
    assert limits == [
        {
            "name": "create_user-limit",
            "metric": "create_user-quota",
            "unit": "1/min/{project}",
            "values": {"STANDARD": 100},
        }
    ]


def test_per_minute_conversion():
    assert per_minute(RateLimit(count=100, period=RatePeriod.HOUR)) == 2
    assert per_minute(RateLimit(count=5, period=RatePeriod.SECOND)) == 300
    assert per_minute(RateLimit(count=1, period=RatePeriod.DAY)) == 1


def test_gateway_resources_and_deploy_script(tmp_path: Path):
    files = render_gateway(sample_handlers(), config_for(tmp_path))

    docs = list(yaml.safe_load_all(load(files, "gateway-config.yaml").content))
    assert [d["kind"] for d in docs] == ["ApiGatewayAPI", "ApiGatewayAPIConfig", "ApiGatewayGateway"]
    assert docs[0]["metadata"]["name"] == "box-api"

    script = load(files, "deploy.sh")
    assert script.executable
    assert 'API_NAME="box-api"' in script.content


def test_render_is_deterministic(tmp_path: Path):
    a = render_gateway(sample_handlers(), config_for(tmp_path))
    b = render_gateway(list(reversed(sample_handlers())), config_for(tmp_path))
    assert load(a, "openapi.yaml").content == load(b, "openapi.yaml").content


def test_duplicate_route_keeps_first_declared_handler(tmp_path: Path):
    first = Handler(
        name="first",
        package="a",
        target=DeploymentTarget.FUNCTION,
        route=Route("GET", "/x"),
    )
    second = Handler(
        name="second",
        package="b",
        target=DeploymentTarget.FUNCTION,
        route=Route("GET", "/x"),
        rate_limit=RateLimit(count=10, period=RatePeriod.SECOND, raw="10/second"),
    )

    doc = openapi([first, second], tmp_path)
    op = doc["paths"]["/x"]["get"]

    assert op["operationId"] == "first"
    assert op["x-google-backend"]["address"].endswith("/first")
    assert [t["name"] for t in doc["tags"]] == ["a"]
    assert "x-google-management" not in doc
