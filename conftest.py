import hashlib
import os
import subprocess

import pytest

from docstrata import Commit, ConfigurationError, DocumentLocator


class InMemoryRepository:
    """History held in memory; each commit applies changes to the previous snapshot."""

    def __init__(self, name="docs"):
        self.name = name
        self.blobs = {}
        self.trees = {}
        self.commits = []
        self.blob_reads = 0

    def commit(self, changes, timestamp=None, subject=""):
        snapshot = dict(self.trees[self.commits[-1].oid]) if self.commits else {}
        for path, content in changes.items():
            if content is None:
                snapshot.pop(path, None)
                continue
            data = content.encode("utf-8") if isinstance(content, str) else content
            oid = hashlib.sha1(data).hexdigest()
            self.blobs[oid] = data
            snapshot[path] = oid

        index = len(self.commits)
        oid = hashlib.sha1(f"{self.name}:{index}".encode("utf-8")).hexdigest()
        commit = Commit(
            oid=oid,
            timestamp=timestamp if timestamp is not None else 1_700_000_000 + 86_400 * index,
            tree=f"tree-{oid[:8]}",
            parent=self.commits[-1].oid if self.commits else None,
            subject=subject,
            repository=self,
        )
        self.trees[oid] = snapshot
        self.commits.append(commit)
        return commit

    def iter_commits(self, ref="HEAD"):
        if not self.commits:
            raise ConfigurationError(f"Cannot resolve reference '{ref}' in {self.name}")
        return iter(reversed(self.commits))

    def read_tree(self, treeish):
        return self.trees[treeish]

    def read_blob(self, oid):
        self.blob_reads += 1
        return self.blobs[oid]


@pytest.fixture
def history():
    return InMemoryRepository()


@pytest.fixture
def letter_locator():
    """doc-A.md -> 'A'"""
    return DocumentLocator("docs", r"doc-(?P<id>\w+)\.md$")


@pytest.fixture
def make_doc():
    def _make(status, title="Sample", body="Body text.\n", **fields):
        lines = ["---", f"title: {title}", f"status: {status}"]
        lines += [f"{key}: {value}" for key, value in fields.items()]
        lines.append("---")
        return "\n".join(lines) + "\n" + body

    return _make


@pytest.fixture
def git_repo(tmp_path):
    """
    Three commits on master:
      1. add docs/doc-A.md (Draft)
      2. modify docs/doc-A.md (Final)
      3. rename docs/doc-A.md -> docs/doc-B.md, content unchanged
    """
    repo = tmp_path / "repo"
    repo.mkdir()

    def run(*args, when=None):
        env = dict(os.environ)
        if when:
            env["GIT_AUTHOR_DATE"] = when
            env["GIT_COMMITTER_DATE"] = when
        subprocess.run(["git", "-C", str(repo)] + list(args),
                       check=True, capture_output=True, env=env)

    run("init")
    run("config", "user.email", "tester@test.com")
    run("config", "user.name", "Tester")
    (repo / "docs").mkdir()

    draft = "---\ntitle: Alpha\nstatus: Draft\nauthor: Alice (@alice)\n---\nAlpha body\n"
    final = "---\ntitle: Alpha\nstatus: Final\nauthor: Alice (@alice)\n---\nAlpha body\n"

    (repo / "docs" / "doc-A.md").write_text(draft, encoding="utf-8")
    (repo / "README.md").write_text("# Docs\n", encoding="utf-8")
    run("add", ".")
    run("commit", "-m", "add A", when="2023-01-10T12:00:00+00:00")

    (repo / "docs" / "doc-A.md").write_text(final, encoding="utf-8")
    run("add", ".")
    run("commit", "-m", "finalize A", when="2023-02-20T12:00:00+00:00")

    run("mv", "docs/doc-A.md", "docs/doc-B.md")
    run("commit", "-m", "rename A to B", when="2023-03-30T12:00:00+00:00")

    return str(repo)
