"""Shared test fixtures.

Provides:
- ``sign``: builds an ``X-Hub-Signature`` value for a body and secret
- ``make_repo``: factory for ``Repository`` records rooted in ``tmp_path``
- ``fake_git``: factory writing an executable shell script that stands in for git
- ``registry`` / ``client``: a one-repository app under FastAPI's ``TestClient``
"""

import hashlib
import hmac
import os
import stat
import textwrap

import pytest
from fastapi.testclient import TestClient

from main import create_app
from models.repository import Repository
from registry import Registry

SECRET = "my-secret"
ROUTING_NAME = "example.com"
IDENTIFIER = "owner/repo"


def make_signature(body: bytes, secret: str) -> str:
    return "sha1=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()


@pytest.fixture
def sign():
    return make_signature


@pytest.fixture
def make_repo(tmp_path):
    def _make_repo(name=IDENTIFIER, secret=SECRET, git_path="/usr/bin/git", insecure=False, path=None):
        return Repository(
            name=name,
            path=path or str(tmp_path),
            secret=secret,
            git_path=git_path,
            insecure=insecure,
        )
    return _make_repo


@pytest.fixture
def fake_git(tmp_path):
    """Write an executable script named ``git`` into its own directory and return its path."""
    def _fake_git(script: str, directory: str = "bin") -> str:
        bin_dir = tmp_path / directory
        bin_dir.mkdir(exist_ok=True)
        git = bin_dir / "git"
        git.write_text("#!/bin/sh\n" + textwrap.dedent(script))
        git.chmod(git.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(git)
    return _fake_git


@pytest.fixture
def repo(make_repo):
    return make_repo()


@pytest.fixture
def registry(repo):
    return Registry({ROUTING_NAME: repo})


@pytest.fixture
def client(registry):
    with TestClient(create_app(registry)) as c:
        yield c


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("CONFIG_PATH", "EMAIL_PASSWORD", "EMAIL_USERNAME", "SMTP_SERVER", "SMTP_PORT", "EMAIL_USE_TLS"):
        monkeypatch.delenv(name, raising=False)
    return os.environ
