"""
Shared test fixtures — small on-disk JavaScript projects.
"""

import json
from pathlib import Path

import pytest


def write_package(directory: Path, deps: dict | None = None, **extra) -> Path:
    """Write a package.json into ``directory`` and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    data = {"name": directory.name, "version": "1.0.0", **extra}
    if deps:
        data["dependencies"] = deps
    path = directory / "package.json"
    path.write_text(json.dumps(data, indent=2))
    return path


@pytest.fixture
def mern_project(tmp_path: Path) -> Path:
    """Express server at the root, React client under client/."""
    root = tmp_path / "shop"
    write_package(root, {"express": "^4.18.0", "mongoose": "^7.0.0"}, main="server.js")
    (root / "server.js").write_text(
        "const app = require('express')();\n"
        "app.get('/health', (req, res) => res.send('ok'));\n"
        "app.listen(process.env.PORT || 5000);\n"
    )
    write_package(root / "client", {"react": "^18.2.0", "react-dom": "^18.2.0"})
    (root / "package-lock.json").write_text("{}")
    return root


@pytest.fixture
def react_project(tmp_path: Path) -> Path:
    root = tmp_path / "dashboard"
    write_package(root, {"react": "^18.2.0", "react-dom": "^18.2.0"})
    (root / "src").mkdir()
    (root / "src" / "index.jsx").write_text("import React from 'react';\n")
    return root


@pytest.fixture
def bun_project(tmp_path: Path) -> Path:
    root = tmp_path / "api"
    write_package(root, None, scripts={"start": "bun run src/index.ts"})
    (root / "src").mkdir()
    (root / "src" / "index.ts").write_text("Bun.serve({ port: 3000, fetch() { return new Response('hi'); } });\n")
    (root / "bun.lockb").write_bytes(b"\x00")
    return root


@pytest.fixture
def empty_project(tmp_path: Path) -> Path:
    """A directory with no framework markers at all."""
    root = tmp_path / "notes"
    root.mkdir()
    (root / "README.md").write_text("# notes\n")
    return root
