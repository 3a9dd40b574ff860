import os
import subprocess

import pytest

from linestrata.config import AnalysisConfig
from linestrata.engine import AttributionEngine
from linestrata.object_store import MemoryObjectStore
from linestrata.reporting import ProgressReporter

ALICE = ("Alice Smith", "alice@example.com")
BOB = ("Bob Jones", "bob@example.com")
CAROL = ("Carol White", "carol@example.com")
DAVE = ("Dave Brown", "dave@example.com")

BASE_TS = 1_700_000_000  # 2023-11-14 22:13:20 UTC


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def make_engine(quiet_reporter):
    """Factory: single-threaded engine over a store with config overrides."""

    def factory(store, **overrides):
        overrides.setdefault("workers", 1)
        return AttributionEngine(store, AnalysisConfig(**overrides), reporter=quiet_reporter)

    return factory


@pytest.fixture
def commit(store):
    """Commit a full snapshot as one of the test authors."""

    def factory(files, author=ALICE, parents=(), ts=0, message="", ref="HEAD"):
        name, email = author
        return store.commit(
            files,
            parents=parents,
            author_name=name,
            author_email=email,
            timestamp=BASE_TS + ts,
            message=message,
            ref=ref,
        )

    return factory


@pytest.fixture
def two_author_store(store, commit):
    """C1: Alice adds 10 code lines to x.py. C2: Bob adds 2 comment lines."""
    code = "".join(f"value_{i} = {i}\n" for i in range(10))
    c1 = commit({"x.py": code}, ALICE, ts=0, message="C1")
    c2 = commit({"x.py": code + "# reviewed\n# ok\n"}, BOB, parents=[c1], ts=100, message="C2")
    return store, c1, c2


@pytest.fixture
def git_repo(tmp_path):
    """
    Real repository on branch ``main``:

    1. Alice adds app.py (4 lines) and notes.txt
    2. Bob appends a line to app.py
    3. Carol adds lib.py on branch ``feature``
    4. Alice renames app.py to main.py on main
    5. Dave merges feature into main
    """
    repo = tmp_path / "repo"
    repo.mkdir()
    clock = {"ts": BASE_TS}

    def run(*args, author=ALICE):
        clock["ts"] += 100
        date = f"{clock['ts']} +0000"
        env = dict(
            os.environ,
            GIT_AUTHOR_NAME=author[0],
            GIT_AUTHOR_EMAIL=author[1],
            GIT_COMMITTER_NAME=author[0],
            GIT_COMMITTER_EMAIL=author[1],
            GIT_AUTHOR_DATE=date,
            GIT_COMMITTER_DATE=date,
        )
        subprocess.run(["git", "-C", str(repo)] + list(args), check=True, capture_output=True, env=env)

    run("init")
    run("symbolic-ref", "HEAD", "refs/heads/main")
    run("config", "user.email", "tester@test.com")
    run("config", "user.name", "Tester")
    run("config", "commit.gpgsign", "false")

    (repo / "app.py").write_text("import os\n\n# greet\nprint('hello')\n", encoding="utf-8")
    (repo / "notes.txt").write_text("todo\n", encoding="utf-8")
    run("add", ".")
    run("commit", "-m", "initial", author=ALICE)

    (repo / "app.py").write_text("import os\n\n# greet\nprint('hello')\nprint('world')\n", encoding="utf-8")
    run("commit", "-am", "world", author=BOB)

    run("checkout", "-b", "feature")
    (repo / "lib.py").write_text("def helper():\n    return 1\n", encoding="utf-8")
    run("add", "lib.py")
    run("commit", "-m", "helper", author=CAROL)

    run("checkout", "main")
    run("mv", "app.py", "main.py")
    run("commit", "-m", "rename", author=ALICE)

    run("merge", "--no-ff", "feature", "-m", "merge feature", author=DAVE)

    return str(repo)
