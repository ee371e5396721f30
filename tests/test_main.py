import logging
import os
import textwrap

import pytest

import main
from main import create_app, parse_args
from registry import Registry


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.mark.parametrize("argv, config_path, port", [
    ([], "./config.yaml", 8080),
    (["path/to/config.yaml"], "path/to/config.yaml", 8080),
    (["-p", "80"], "./config.yaml", 80),
    (["--port", "80"], "./config.yaml", 80),
    (["path/to/config.yaml", "-p", "80"], "path/to/config.yaml", 80),
    (["path/to/config.yaml", "--port", "80"], "path/to/config.yaml", 80),
])
def test_parse_args(clean_env, argv, config_path, port):
    args = parse_args(argv)
    assert args.config == config_path
    assert args.port == port
    assert args.host == "0.0.0.0"


def test_parse_args_uses_config_path_env(clean_env, monkeypatch):
    monkeypatch.setenv("CONFIG_PATH", "/etc/gitup.yaml")
    assert parse_args([]).config == "/etc/gitup.yaml"


def test_create_app_injects_collaborators(registry):
    notifier = object()
    app = create_app(registry, notifier)
    assert app.state.registry is registry
    assert app.state.notifier is notifier
    assert app.openapi_url is None


def test_main_exits_on_config_error(clean_env, tmp_path, capsys, monkeypatch, restore_root_logger):
    run = []
    monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: run.append(a))

    with pytest.raises(SystemExit) as exc_info:
        main.main([str(tmp_path / "missing.yaml")])

    assert exc_info.value.code == 1
    assert "not found" in capsys.readouterr().err
    assert run == []


def test_main_serves_configured_repositories(clean_env, tmp_path, fake_git, monkeypatch, restore_root_logger):
    git = fake_git("exit 0\n")
    monkeypatch.setenv("PATH", os.path.dirname(git))
    config_path = tmp_path / "config.yaml"
    config_path.write_text(textwrap.dedent("""
        repositories:
          example.com:
            name: owner/repo
            path: ./repo
            secret: my-secret
    """))

    served = {}

    def fake_run(app, host, port, **kwargs):
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr(main.uvicorn, "run", fake_run)
    main.main([str(config_path), "--port", "9000"])

    assert served["port"] == 9000
    assert served["host"] == "0.0.0.0"
    registry = served["app"].state.registry
    assert isinstance(registry, Registry)
    assert registry.find("example.com").git_path == git
    assert served["app"].state.notifier is None


@pytest.fixture
def write_startup_config(tmp_path, fake_git, monkeypatch):
    git = fake_git("exit 0\n")
    monkeypatch.setenv("PATH", os.path.dirname(git))

    def _write(extra: str) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""
            repositories:
              example.com:
                path: ./repo
                secret: my-secret
        """) + textwrap.dedent(extra))
        return str(path)
    return _write


def test_main_exits_on_invalid_smtp_port(clean_env, write_startup_config, capsys, monkeypatch, restore_root_logger):
    monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: pytest.fail("server started"))
    path = write_startup_config("""
        notifications:
          email:
            smtp_server: smtp.example.com
            smtp_port: abc
    """)

    with pytest.raises(SystemExit) as exc_info:
        main.main([path])

    assert exc_info.value.code == 1
    assert "smtp_port" in capsys.readouterr().err


def test_main_exits_on_invalid_smtp_port_from_environment(
        clean_env, write_startup_config, capsys, monkeypatch, restore_root_logger):
    monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: pytest.fail("server started"))
    monkeypatch.setenv("SMTP_PORT", "not-a-port")
    path = write_startup_config("""
        notifications:
          email:
            smtp_server: smtp.example.com
    """)

    with pytest.raises(SystemExit) as exc_info:
        main.main([path])

    assert exc_info.value.code == 1
    assert "smtp_port" in capsys.readouterr().err


def test_main_exits_on_unopenable_log_database(
        clean_env, write_startup_config, tmp_path, capsys, monkeypatch, restore_root_logger):
    monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: pytest.fail("server started"))
    db_path = tmp_path / "missing" / "logs.db"
    path = write_startup_config(f"log_db_path: {db_path}\n")

    with pytest.raises(SystemExit) as exc_info:
        main.main([path])

    assert exc_info.value.code == 1
    assert "Cannot open log database" in capsys.readouterr().err
