import subprocess
from unittest.mock import patch

import pytest

from linestrata.errors import NotFound, ObjectError, ObjectStoreTimeout
from linestrata.object_store import GitObjectStore, MemoryObjectStore, parse_commit

# ============================================================================
# COMMIT PARSING
# ============================================================================


def test_parse_commit_headers():
    raw = (
        b"tree 4b825dc642cb6eb9a060e54bf8d69288fbee4904\n"
        b"parent aaaa\n"
        b"parent bbbb\n"
        b"author Alice Smith <Alice@Example.com> 1700000000 +0100\n"
        b"committer Alice Smith <alice@example.com> 1700000000 +0100\n"
        b"\n"
        b"Merge branch 'x'\n\nbody\n"
    )
    commit = parse_commit("cccc", raw)
    assert commit.tree_id == "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
    assert commit.parents == ("aaaa", "bbbb")
    assert commit.author_name == "Alice Smith"
    assert commit.author_email == "Alice@Example.com"
    assert commit.contributor_key == "alice@example.com"
    assert commit.timestamp == 1_700_000_000
    assert commit.summary == "Merge branch 'x'"
    assert commit.is_merge
    assert not commit.is_root


def test_parse_commit_without_tree():
    with pytest.raises(ObjectError):
        parse_commit("cccc", b"author A <a@b.c> 1 +0000\n\nmsg\n")


def test_parse_commit_malformed_author():
    with pytest.raises(ObjectError):
        parse_commit("cccc", b"tree abc\nauthor nobody\n\nmsg\n")


# ============================================================================
# MEMORY STORE
# ============================================================================


def test_memory_store_hashes_blobs_like_git():
    store = MemoryObjectStore()
    # `git hash-object` of "hello\n"
    assert store.add_blob("hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"


def test_memory_store_round_trip():
    store = MemoryObjectStore()
    commit_id = store.commit({"a.py": "x = 1\n", "src/b.py": b"y = 2\n"}, author_name="Bob", author_email="bob@example.com", timestamp=42)
    assert store.resolve_ref("HEAD") == commit_id
    assert store.resolve_ref(commit_id) == commit_id

    commit = store.read_commit(commit_id)
    assert commit.author_name == "Bob"
    assert commit.timestamp == 42
    assert commit.is_root

    tree = store.read_tree(commit.tree_id)
    assert sorted(tree) == ["a.py", "src/b.py"]
    assert store.read_blob(tree["src/b.py"]) == b"y = 2\n"


def test_memory_store_errors():
    store = MemoryObjectStore()
    blob = store.add_blob("data")
    with pytest.raises(NotFound):
        store.resolve_ref("missing")
    with pytest.raises(NotFound):
        store.resolve_ref(blob)
    with pytest.raises(ObjectError):
        store.read_commit(blob)
    with pytest.raises(ObjectError):
        store.read_blob("0" * 40)

    store.remove_object(blob)
    with pytest.raises(ObjectError) as exc_info:
        store.read_blob(blob)
    assert exc_info.value.object_id == blob


# ============================================================================
# GIT STORE
# ============================================================================


def test_git_store_reads_repository(git_repo):
    store = GitObjectStore(git_repo)
    head = store.resolve_ref("HEAD")
    assert store.resolve_ref("main") == head

    merge = store.read_commit(head)
    assert merge.is_merge
    assert merge.author_email == "dave@example.com"
    assert merge.summary == "merge feature"

    tree = store.read_tree(merge.tree_id)
    assert sorted(tree) == ["lib.py", "main.py", "notes.txt"]
    assert store.read_blob(tree["lib.py"]) == b"def helper():\n    return 1\n"
    assert store.exectime_external > 0


def test_git_store_tree_is_a_copy(git_repo):
    store = GitObjectStore(git_repo)
    tree_id = store.read_commit(store.resolve_ref("HEAD")).tree_id
    store.read_tree(tree_id).clear()
    assert len(store.read_tree(tree_id)) == 3


def test_git_store_unknown_objects(git_repo):
    store = GitObjectStore(git_repo)
    with pytest.raises(NotFound):
        store.resolve_ref("no-such-branch")
    with pytest.raises(ObjectError):
        store.read_blob("0" * 40)
    with pytest.raises(ObjectError):
        store.read_commit("0" * 40)


def test_git_store_timeout(git_repo):
    store = GitObjectStore(git_repo, timeout=0.01)
    with patch("linestrata.object_store.subprocess.run", side_effect=subprocess.TimeoutExpired("git", 0.01)):
        with pytest.raises(ObjectStoreTimeout):
            store.read_blob("abc")


def test_git_store_missing_executable(git_repo):
    store = GitObjectStore(git_repo, git_executable="definitely-not-git")
    with pytest.raises(ObjectError):
        store.read_blob("abc")


def test_is_repository(git_repo, tmp_path):
    assert GitObjectStore.is_repository(git_repo)
    plain = tmp_path / "plain"
    plain.mkdir()
    assert not GitObjectStore.is_repository(str(plain))
