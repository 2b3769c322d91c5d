from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_ENVIRONMENTS = ("dev", "staging", "production")


class BuildConfig(BaseModel):
    """
    Everything a generation run needs besides the handlers themselves.

    All platform defaults live here so emitters never carry their own
    hidden fallbacks.
    """

    model_config = ConfigDict(frozen=True)

    handlers_dir: Path = Path("./handlers")
    output_dir: Path = Path("./build")
    project_id: str = Field(..., min_length=1)
    region: str = "us-central1"
    environment: str = "dev"
    module_name: str = Field(..., min_length=1)  # caller's distribution name
    source_root: Path = Path(".")               # where the caller's pyproject.toml lives

    clean: bool = False
    verbose: bool = False
    strict: bool = False

    # Cloud Functions
    default_memory_mb: int = Field(256, gt=0)
    default_timeout_seconds: int = Field(60, gt=0)
    function_max_instances: int = Field(100, gt=0)
    function_runtime: str = "python312"

    # Cloud Run
    python_version: str = "3.12"
    container_port: int = Field(8080, gt=0, lt=65536)
    container_concurrency: int = Field(80, ge=1, le=1000)

    # API Gateway / Terraform
    api_name: str = "box-api"
    environments: tuple[str, ...] = DEFAULT_ENVIRONMENTS

    @model_validator(mode="after")
    def check_environment(self) -> "BuildConfig":
        # the generated variables.tf only accepts these
        if self.environment not in self.environments:
            raise ValueError(
                f"environment must be one of {', '.join(self.environments)}, got: {self.environment}"
            )
        return self

    @property
    def functions_dir(self) -> Path:
        return self.output_dir / "functions"

    @property
    def containers_dir(self) -> Path:
        return self.output_dir / "containers"

    @property
    def gateway_dir(self) -> Path:
        return self.output_dir / "gateway"

    @property
    def terraform_dir(self) -> Path:
        return self.output_dir / "terraform"
