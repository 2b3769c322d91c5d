from pathlib import Path

from boxgen.domain.models import DeploymentTarget, Handler, Route
from boxgen.emitters.terraform import render_terraform
from boxgen.orchestrator.config import BuildConfig


def config_for(tmp_path: Path, **kw) -> BuildConfig:
    return BuildConfig(project_id="my-proj", module_name="myapp", output_dir=tmp_path / "build", **kw)


def fn(name, package="accounts", **kw) -> Handler:
    return Handler(
        name=name,
        package=package,
        target=DeploymentTarget.FUNCTION,
        route=Route("GET", f"/{name}"),
        **kw,
    )


def ctr(name, package="users") -> Handler:
    return Handler(
        name=name,
        package=package,
        target=DeploymentTarget.CONTAINER,
        route=Route("GET", f"/{name}"),
    )


def files_of(handlers, config):
    return {f.path: f.content for f in render_terraform(handlers, config)}


def test_function_only_layout(tmp_path: Path):
    files = files_of([fn("CreateAccount")], config_for(tmp_path))

    assert "modules/function-hosting/main.tf" in files
    assert "modules/container-hosting/main.tf" not in files
    for module in ("gateway", "networking"):
        for name in ("main.tf", "variables.tf", "outputs.tf"):
            assert f"modules/{module}/{name}" in files

    root = files["main.tf"]
    assert 'module "function_hosting"' in root
    assert 'module "container_hosting"' not in root
    assert 'module "gateway"' in root
    assert 'module "networking"' in root
    assert "service_urls" not in files["outputs.tf"]


def test_function_module_resources(tmp_path: Path):
    main = files_of([fn("CreateAccount", memory="512MB")], config_for(tmp_path))[
        "modules/function-hosting/main.tf"
    ]

    assert 'resource "google_cloudfunctions2_function" "create_account"' in main
    assert 'name        = "create-account"' in main
    assert 'available_memory      = "512Mi"' in main
    assert "timeout_seconds       = 60" in main
    assert "max_instance_count    = 100" in main
    assert "roles/cloudsql.client" in main
    assert "roles/secretmanager.secretAccessor" in main
    assert 'secret_id = "database-url-${var.environment}"' in main


def test_one_service_account_per_package(tmp_path: Path):
    handlers = [fn("a"), fn("b"), fn("c", package="billing")]
    main = files_of(handlers, config_for(tmp_path))["modules/function-hosting/main.tf"]

    assert main.count('resource "google_service_account"') == 2
    assert main.count('resource "google_cloudfunctions2_function"') == 3
    assert "google_service_account.accounts.email" in main
    assert "google_service_account.billing.email" in main


def test_container_module_one_service_per_group(tmp_path: Path):
    files = files_of([ctr("list_users"), ctr("create_user")], config_for(tmp_path))

    assert "modules/function-hosting/main.tf" not in files
    main = files["modules/container-hosting/main.tf"]
    assert main.count('resource "google_cloud_run_v2_service" ') == 1
    assert 'resource "google_cloud_run_v2_service" "users"' in main
    assert "max_instance_request_concurrency = 80" in main
    assert 'module "container_hosting"' in files["main.tf"]
    assert "module.container_hosting.service_urls" in files["outputs.tf"]


def test_gateway_module_reads_openapi_from_gateway_output(tmp_path: Path):
    main = files_of([fn("a")], config_for(tmp_path))["modules/gateway/main.tf"]
    assert 'filebase64("${path.module}/../../../gateway/openapi.yaml")' in main


def test_networking_always_provisions_database(tmp_path: Path):
    main = files_of([ctr("x")], config_for(tmp_path))["modules/networking/main.tf"]
    for resource in (
        "google_compute_network",
        "google_compute_subnetwork",
        "google_vpc_access_connector",
        "google_sql_database_instance",
        "google_sql_database",
        "google_sql_user",
    ):
        assert f'resource "{resource}"' in main
    assert 'database_version = "POSTGRES_15"' in main


def test_tfvars_for_every_environment_regardless_of_requested(tmp_path: Path):
    files = files_of([fn("a")], config_for(tmp_path, environment="staging"))

    tfvars = sorted(p for p in files if p.startswith("environments/"))
    assert tfvars == [
        "environments/dev.tfvars",
        "environments/production.tfvars",
        "environments/staging.tfvars",
    ]
    prod = files["environments/production.tfvars"]
    assert 'project_id  = "YOUR_PROJECT_ID"' in prod
    assert 'environment = "production"' in prod
    assert 'database_password = "CHANGE_ME_PRODUCTION"' in prod

    variables = files["variables.tf"]
    assert 'default     = "staging"' in variables
    assert 'contains(["dev", "staging", "production"], var.environment)' in variables


def test_supporting_files_and_no_template_leftovers(tmp_path: Path):
    files = files_of([fn("a"), ctr("b")], config_for(tmp_path))

    assert "*.tfstate" in files[".gitignore"]
    assert "function-hosting/" in files["README.md"]
    assert "container-hosting/" in files["README.md"]
    for path, content in files.items():
        assert "{{" not in content, path
        assert "{%" not in content, path
