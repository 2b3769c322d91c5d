import json
from pathlib import Path
import textwrap

from typer.testing import CliRunner

from boxgen.cli import app

runner = CliRunner()


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


def sample_project(root: Path) -> None:
    write(root / "pyproject.toml", '[project]\nname = "myapp"\nversion = "0.1.0"\n')
    write(
        root / "handlers" / "users.py",
        """
        # @box:container
        # @box:path GET /users
        def list_users(request):
            return "users"


        # @box:function
        # @box:path POST /users
        # @box:auth required
        def create_user(request):
            return "created"
        """,
    )


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "box 0.1.0" in result.stdout


def test_generate_writes_artifacts(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app,
        ["generate", "--handlers", "handlers", "--output", "build", "--project", "my-proj"],
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "build" / "gateway" / "openapi.yaml").exists()
    assert (tmp_path / "build" / "functions" / "create-user" / "main.py").exists()
    assert (tmp_path / "build" / "containers" / "users" / "main.py").exists()
    assert (tmp_path / "build" / "terraform" / "environments" / "dev.tfvars").exists()


def test_generate_requires_project(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["generate", "--handlers", "handlers"])
    assert result.exit_code != 0


def test_generate_rejects_missing_handlers_dir(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app, ["generate", "--handlers", "nope", "--project", "my-proj", "--module", "myapp"]
    )
    assert result.exit_code != 0
    assert not (tmp_path / "build").exists()


def test_generate_without_pyproject_needs_module(tmp_path: Path, monkeypatch):
    write(tmp_path / "handlers" / "a.py", "# nothing here\n")
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["generate", "--handlers", "handlers", "--project", "my-proj"])
    assert result.exit_code == 1

    result = runner.invoke(
        app, ["generate", "--handlers", "handlers", "--project", "my-proj", "--module", "myapp"]
    )
    assert result.exit_code == 0, result.output


def test_generate_strict_exits_non_zero_on_blocking_errors(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    write(
        tmp_path / "handlers" / "bad.py",
        """
        # @box:function
        # @box:path GET /bad
        # @box:memory 99MB
        def bad(request):
            return "bad"
        """,
    )
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app,
        ["generate", "--handlers", "handlers", "--output", "build", "--project", "my-proj", "--strict"],
    )
    assert result.exit_code == 1
    assert not (tmp_path / "build").exists()


def test_routes_json(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["routes", "--handlers", "handlers", "--format", "json"])
    assert result.exit_code == 0, result.output

    out = result.stdout
    payload = json.loads(out[out.index("{") : out.rindex("}") + 1])
    routes = {(h["method"], h["path"]): h for h in payload["handlers"]}

    assert routes[("GET", "/users")]["target"] == "container"
    assert routes[("POST", "/users")]["auth"] == "required"
    assert payload["parse_errors"] == []
    assert payload["validation_errors"] == []


def test_routes_table(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["routes", "--handlers", "handlers"])
    assert result.exit_code == 0, result.output
    assert "Handlers: 2" in result.stdout


def test_generate_rejects_unknown_environment(tmp_path: Path, monkeypatch):
    sample_project(tmp_path)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app,
        ["generate", "--handlers", "handlers", "--output", "build", "--project", "my-proj", "--env", "qa"],
    )
    assert result.exit_code != 0
    assert not (tmp_path / "build").exists()
