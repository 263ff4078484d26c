import re

from recall.context import WorkspaceScope
from recall.keys import create_workspace_id, namespace
from recall.models import WorkspaceMode


def test_workspace_id_matches_rolling_hash():
    assert create_workspace_id("abc") == "22ci"
    assert create_workspace_id("") == "0"


def test_workspace_id_hashes_utf16_code_units():
    # One astral character is two UTF-16 code units.
    assert create_workspace_id("\U0001F600") == "11zz7"


def test_workspace_id_is_deterministic_and_base36():
    path = "/home/dev/projects/some-long-repository-name/with/nested/dirs"
    first = create_workspace_id(path)
    assert first == create_workspace_id(path)
    assert re.fullmatch(r"[0-9a-z]+", first)
    assert first != create_workspace_id(path + "2")


def test_scope_namespaces_follow_mode():
    scope = WorkspaceScope.for_path("abc", "isolated")
    assert scope.workspace_id == "22ci"
    assert scope.namespace(False) == "ws:22ci"
    assert scope.namespace(True) == namespace("22ci", True) == "global"
    assert scope.read_namespaces() == [("ws:22ci", False)]
    assert scope.with_mode("global").read_namespaces() == [("global", True)]
    assert scope.with_mode(WorkspaceMode.hybrid).read_namespaces() == [
        ("ws:22ci", False),
        ("global", True),
    ]


def test_default_mode_is_read_at_call_time(monkeypatch):
    monkeypatch.setenv("WORKSPACE_MODE", "hybrid")
    assert WorkspaceScope.for_path("abc").mode == WorkspaceMode.hybrid
    monkeypatch.setenv("WORKSPACE_MODE", "bogus")
    assert WorkspaceScope.for_path("abc").mode == WorkspaceMode.isolated
