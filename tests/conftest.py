"""Shared fixtures: a scripted stand-in for ``flowctl`` inside a temp workspace.

The fake binary is a small Python program written to ``.flow/bin/flowctl``
with a shebang pointing at the running interpreter. It appends one JSON line
per invocation to ``<workspace>/calls.jsonl`` (outside ``.flow/`` so watcher
tests are not disturbed) and answers like a real flowctl would. Behaviour is
steered with environment variables, which the spawned child inherits:

- ``FAKE_FLOWCTL_MODE``: ``ok`` (default), ``fail``, ``garbage``,
  ``bad_shape``, ``hang``, ``huge``, ``signal``.
- ``FAKE_FLOWCTL_DELAY``: seconds to sleep inside write commands.

Task statuses default to ``todo``; ``<workspace>/statuses.json`` maps task ids
to other statuses, and the epic list counts them as done.
"""

from __future__ import annotations

import json
import os
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from flowdesk.domain import Workspace

FAKE_FLOWCTL_BODY = r'''
import json
import os
import pathlib
import signal
import sys
import time

args = sys.argv[1:]
root = pathlib.Path(__file__).resolve().parents[2]
mode = os.environ.get("FAKE_FLOWCTL_MODE", "ok")
delay = float(os.environ.get("FAKE_FLOWCTL_DELAY", "0") or 0)

if not args or args[-1] != "--json":
    sys.stderr.write("expected --json as the last argument\n")
    sys.exit(64)
args = args[:-1]

stdin_text = sys.stdin.read() if args[-1:] == ["-"] else ""
record = {"argv": args, "cwd": os.getcwd(), "stdin": stdin_text, "pid": os.getpid(), "start": time.time()}

WRITES = {"start", "done", "task", "init", "epic"}
if args and args[0] in WRITES and delay:
    time.sleep(delay)

record["end"] = time.time()
with open(root / "calls.jsonl", "a", encoding="utf-8") as handle:
    handle.write(json.dumps(record) + "\n")

if mode == "fail":
    sys.stderr.write("boom: " + " ".join(args) + "\n")
    sys.exit(2)
if mode == "garbage":
    sys.stdout.write("Traceback (most recent call last): not json at all")
    sys.exit(0)
if mode == "bad_shape":
    print(json.dumps({"success": True, "epics": "nope", "tasks": 7}))
    sys.exit(0)
if mode == "hang":
    time.sleep(30)
    sys.exit(0)
if mode == "huge":
    sys.stdout.write("x" * (2 * 1024 * 1024))
    sys.exit(0)
if mode == "signal":
    os.kill(os.getpid(), signal.SIGKILL)

statuses_path = root / "statuses.json"
statuses = json.loads(statuses_path.read_text(encoding="utf-8")) if statuses_path.exists() else {}


def task(task_id, epic):
    return {
        "id": task_id,
        "epic": epic,
        "title": "Task " + task_id,
        "status": statuses.get(task_id, "todo"),
        "priority": None,
        "depends_on": [],
    }


command = args[0] if args else ""
if command == "epics":
    payload = {
        "success": True,
        "epics": [
            {
                "id": "fn-1",
                "title": "First epic",
                "status": "open",
                "tasks": 2,
                "done": sum(statuses.get(f"fn-1.{n}") == "done" for n in (1, 2)),
            }
        ],
        "count": 1,
    }
elif command == "tasks":
    epic = args[args.index("--epic") + 1]
    payload = {"success": True, "tasks": [task(epic + ".1", epic), task(epic + ".2", epic)]}
elif command == "show" and "." in args[1]:
    payload = dict(task(args[1], args[1].rsplit(".", 1)[0]))
    payload.update(
        success=True,
        created_at="2026-01-01T00:00:00Z",
        updated_at="2026-01-01T00:00:00Z",
        spec_path=".flow/tasks/" + args[1] + ".md",
    )
elif command == "show":
    payload = {
        "success": True,
        "id": args[1],
        "title": "First epic",
        "status": "open",
        "branch_name": args[1],
        "spec_path": ".flow/specs/" + args[1] + ".md",
        "depends_on_epics": [],
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
        "tasks": [],
    }
else:
    payload = {"success": True}
print(json.dumps(payload))
'''


def install_fake_flowctl(root: Path, body: str = FAKE_FLOWCTL_BODY) -> Path:
    binary = root / ".flow" / "bin" / "flowctl"
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return binary


def write_task_statuses(root: Path, statuses: dict[str, str]) -> None:
    staged = root / "statuses.json.tmp"
    staged.write_text(json.dumps(statuses), encoding="utf-8")
    # Replaced atomically so a concurrent flowctl never reads half a file.
    staged.replace(root / "statuses.json")


def read_calls(root: Path) -> list[dict[str, object]]:
    path = root / "calls.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


@pytest.fixture
def flow_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    install_fake_flowctl(root)
    return root


@pytest.fixture
def workspace(flow_root: Path) -> Workspace:
    return Workspace(flow_root)


@pytest.fixture
def install_flowctl() -> Callable[..., Path]:
    return install_fake_flowctl


@pytest.fixture
def calls(flow_root: Path) -> Callable[[], list[dict[str, object]]]:
    return lambda: read_calls(flow_root)


@pytest.fixture
def task_statuses(flow_root: Path) -> Callable[[dict[str, str]], None]:
    return lambda statuses: write_task_statuses(flow_root, statuses)


@pytest.fixture(autouse=True)
def _default_fake_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FAKE_FLOWCTL_MODE", raising=False)
    monkeypatch.delenv("FAKE_FLOWCTL_DELAY", raising=False)
    for name in list(os.environ):
        if name.startswith("FLOWDESK_"):
            monkeypatch.delenv(name, raising=False)