import json
import logging
import os
from datetime import datetime, timezone

import pytest
from click.testing import CliRunner

from docstrata import (
    ConfigurationError,
    DocumentHistoryMiner,
    DocumentLocator,
    GitRepository,
    collect_history,
    main,
)
from conftest import InMemoryRepository

LETTER_PATTERN = r"doc-(?P<id>\w+)\.md$"


def summary(result):
    return {identifier: entry.to_dict() for identifier, entry in result.documents.items()}


def paragraphs(prefix, count):
    return "".join(f"{prefix} paragraph {i}\n" for i in range(count))


@pytest.fixture
def renamed_history(history, make_doc):
    """A created Draft, finalized, then renamed to B unchanged"""
    c1 = history.commit({"docs/doc-A.md": make_doc("Draft"), "README.md": "# Docs\n"})
    c2 = history.commit({"docs/doc-A.md": make_doc("Final")})
    c3 = history.commit({"docs/doc-A.md": None, "docs/doc-B.md": make_doc("Final")})
    return history, (c1, c2, c3)


@pytest.fixture
def similarity_history(history, make_doc):
    """A moved to B with one extra line, C added alongside in the same commit"""
    body = paragraphs("shared", 30)
    history.commit({"docs/doc-A.md": make_doc("Draft", body=body)})
    history.commit({
        "docs/doc-A.md": None,
        "docs/doc-B.md": make_doc("Draft", body=body + "moved\n"),
        "docs/doc-C.md": make_doc("Draft", title="Unrelated", body="fresh\n"),
    })
    return history


# ============================================================================
# INTEGRATION TESTS: IN-MEMORY HISTORY
# ============================================================================

def test_three_commit_rename_scenario(renamed_history, letter_locator):
    history, (c1, c2, c3) = renamed_history
    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()

    assert list(result.documents) == ["B"]
    entry = result.documents["B"]
    assert entry.created_at_commit == c1.oid
    assert entry.last_status_change_at_commit == c2.oid
    assert entry.finalized_at_commit == c2.oid
    assert entry.last_updated_at_commit == c3.oid
    assert entry.created_at == c1.date
    assert entry.header["status"] == "Final"
    assert result.aliases == {"A": "B"}
    assert result.stats.renames_by_single_pair == 1
    assert result.stats.commits_processed == 3

def test_mining_is_idempotent(renamed_history, letter_locator):
    history, _ = renamed_history
    first = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    second = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    assert summary(first) == summary(second)
    assert first.aliases == second.aliases

def test_worker_pool_matches_sequential_run(renamed_history, letter_locator):
    history, _ = renamed_history
    sequential = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    threaded = DocumentHistoryMiner([history], locator=letter_locator, workers=4).mine()
    assert summary(sequential) == summary(threaded)

def test_newest_write_wins_for_last_updated(history, make_doc, letter_locator):
    history.commit({"docs/doc-A.md": make_doc("Draft", body="one\n")})
    history.commit({"docs/doc-A.md": make_doc("Review", body="two\n")})
    newest = history.commit({"docs/doc-A.md": make_doc("Review", body="three\n")})

    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    entry = result.documents["A"]
    assert entry.last_updated_at_commit == newest.oid
    assert entry.last_status_change_at_commit == history.commits[1].oid
    assert entry.body == "three\n"
    assert entry.finalized_at is None

def test_removed_document_is_discarded(history, make_doc, letter_locator):
    history.commit({"docs/doc-A.md": make_doc("Draft"), "docs/doc-K.md": make_doc("Draft")})
    history.commit({"docs/doc-A.md": make_doc("Review")})
    history.commit({"docs/doc-A.md": None})

    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    assert list(result.documents) == ["K"]
    assert result.aliases == {"A": None}
    assert result.stats.records_discarded == 2

def test_lineage_boundary_on_readded_identifier(history, make_doc, letter_locator):
    old = history.commit({"docs/doc-A.md": make_doc("Draft", title="Old")})
    history.commit({"docs/doc-A.md": None})
    history.commit({"docs/doc-A.md": "not a document\n"})
    newest = history.commit({"docs/doc-A.md": make_doc("Draft", title="New")})

    miner = DocumentHistoryMiner([history], locator=letter_locator, workers=1)
    result = miner.mine()

    entry = result.documents["A"]
    assert entry.header["title"] == "New"
    assert entry.last_updated_at_commit == newest.oid
    assert entry.created_at is None
    assert "A" not in result.aliases
    assert result.stats.lineage_boundaries == 1
    assert result.stats.parse_failures == 2
    assert len(result.errors) == 2
    assert [s.commit for s in miner.accumulator.skipped] == [old.oid]
    assert result.stats.records_skipped_complete == 1

def test_skip_statuses_ignore_stub_versions(history, make_doc, letter_locator):
    history.commit({"docs/doc-A.md": make_doc("Draft")})
    finalized = history.commit({"docs/doc-A.md": make_doc("Final")})
    history.commit({"docs/doc-A.md": make_doc("Moved", body="See elsewhere.\n")})

    result = DocumentHistoryMiner(
        [history], locator=letter_locator, skip_statuses=["Moved"], workers=1
    ).mine()
    entry = result.documents["A"]
    assert entry.header["status"] == "Final"
    assert entry.last_updated_at_commit == finalized.oid
    assert entry.finalized_at_commit == finalized.oid

def test_rename_by_similarity_among_several_changes(similarity_history, letter_locator):
    history = similarity_history
    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    assert result.aliases == {"A": "B"}
    assert result.stats.renames_by_similarity == 1
    assert result.documents["B"].created_at_commit == history.commits[0].oid
    assert result.documents["C"].created_at_commit == history.commits[1].oid

def test_worker_pool_scores_renames_like_sequential_run(similarity_history, letter_locator, caplog):
    caplog.set_level(logging.DEBUG, logger="docstrata")
    sequential = DocumentHistoryMiner([similarity_history], locator=letter_locator, workers=1).mine()
    threaded = DocumentHistoryMiner([similarity_history], locator=letter_locator, workers=4).mine()

    assert summary(sequential) == summary(threaded)
    assert threaded.aliases == {"A": "B"}
    assert threaded.stats.renames_by_similarity == 1

    # C was left over after A paired with B
    prefix = similarity_history.commits[1].oid[:10]
    messages = [r.getMessage() for r in caplog.records]
    assert any(prefix in m and "docs/doc-C.md kept as add" in m for m in messages)

def test_unpaired_changes_are_logged_with_commit_and_path(history, make_doc, letter_locator, caplog):
    history.commit({"docs/doc-A.md": make_doc("Draft", title="Alpha", body=paragraphs("alpha", 20))})
    moved = history.commit({
        "docs/doc-A.md": None,
        "docs/doc-B.md": make_doc("Draft", title="Beta", body=paragraphs("beta", 20)),
        "docs/doc-C.md": make_doc("Draft", title="Gamma", body=paragraphs("gamma", 20)),
    })
    caplog.set_level(logging.DEBUG, logger="docstrata")

    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    assert result.aliases == {"A": None}

    prefix = moved.oid[:10]
    messages = [r.getMessage() for r in caplog.records if prefix in r.getMessage()]
    assert any("docs/doc-A.md kept as remove" in m for m in messages)
    assert any("docs/doc-B.md kept as add" in m for m in messages)
    assert any("docs/doc-C.md kept as add" in m for m in messages)
    assert any("docs/doc-A.md removed, A retired" in m for m in messages)

def test_untracked_paths_are_ignored(history, make_doc, letter_locator):
    history.commit({"docs/doc-A.md": make_doc("Draft"), "assets/doc-Z.md": make_doc("Draft")})
    result = DocumentHistoryMiner([history], locator=letter_locator, workers=1).mine()
    assert list(result.documents) == ["A"]

def test_multiple_repositories_are_merged_by_timestamp(make_doc, letter_locator):
    one = InMemoryRepository("one")
    two = InMemoryRepository("two")
    one.commit({"docs/doc-A.md": make_doc("Draft")}, timestamp=100)
    two.commit({"docs/doc-B.md": make_doc("Draft")}, timestamp=200)
    one.commit({"docs/doc-A.md": make_doc("Final")}, timestamp=300)
    two.commit({"docs/doc-B.md": make_doc("Living")}, timestamp=400)

    assert [c.timestamp for c in collect_history([one, two])] == [400, 300, 200, 100]

    result = DocumentHistoryMiner([one, two], locator=letter_locator, workers=2).mine()
    assert result.documents["A"].finalized_at_commit == one.commits[1].oid
    assert result.documents["A"].created_at_commit == one.commits[0].oid
    assert result.documents["B"].finalized_at_commit == two.commits[1].oid
    assert result.stats.commits_processed == 4

def test_empty_history_is_a_configuration_error(history, letter_locator):
    with pytest.raises(ConfigurationError):
        DocumentHistoryMiner([history], locator=letter_locator).mine()

def test_miner_requires_a_repository():
    with pytest.raises(ConfigurationError):
        DocumentHistoryMiner([])


# ============================================================================
# INTEGRATION TESTS: GIT BACKEND
# ============================================================================

def test_git_repository_walks_first_parent_chain(git_repo):
    repo = GitRepository(git_repo)
    commits = list(repo.iter_commits())
    assert [c.subject for c in commits] == ["rename A to B", "finalize A", "add A"]
    assert commits[-1].parent is None
    assert commits[0].parent == commits[1].oid
    assert commits[0].author_name == "Tester"

    tree = repo.read_tree(commits[0].oid)
    assert set(tree) == {"README.md", "docs/doc-B.md"}
    assert b"status: Final" in repo.read_blob(tree["docs/doc-B.md"])

def test_git_repository_rejects_non_repository(tmp_path):
    with pytest.raises(ConfigurationError):
        GitRepository(str(tmp_path))
    with pytest.raises(ConfigurationError):
        GitRepository(str(tmp_path / "missing"))

def test_git_repository_unknown_ref(git_repo):
    with pytest.raises(ConfigurationError):
        list(GitRepository(git_repo).iter_commits("no-such-branch"))

def test_mining_real_repository(git_repo):
    miner = DocumentHistoryMiner(
        [GitRepository(git_repo)], locator=DocumentLocator("docs", LETTER_PATTERN)
    )
    result = miner.mine()

    entry = result.documents["B"]
    assert entry.created_at == datetime(2023, 1, 10, 12, tzinfo=timezone.utc)
    assert entry.last_status_change_at == datetime(2023, 2, 20, 12, tzinfo=timezone.utc)
    assert entry.finalized_at == datetime(2023, 2, 20, 12, tzinfo=timezone.utc)
    assert entry.last_updated_at == datetime(2023, 3, 30, 12, tzinfo=timezone.utc)
    assert result.aliases == {"A": "B"}
    assert entry.to_dict()["authors"] == [{"name": "Alice", "github": "alice"}]


# ============================================================================
# CLI TESTS
# ============================================================================

def test_cli_no_arguments_shows_help():
    result = CliRunner().invoke(main, [])
    assert result.exit_code == 2
    assert "Usage" in result.output

def test_cli_dry_run(git_repo):
    result = CliRunner().invoke(main, [git_repo, "--dry-run", "--no-color", "--preset", "eips"])
    assert result.exit_code == 0
    assert "DRY RUN MODE" in result.output
    assert "Skipped statuses: Moved" in result.output

def test_cli_full_run(git_repo, tmp_path):
    out = tmp_path / "out"
    result = CliRunner().invoke(main, [
        git_repo, "-o", str(out), "-q",
        "--docs-dir", "docs", "--id-pattern", LETTER_PATTERN, "--workers", "2",
    ])
    assert result.exit_code == 0, result.output

    documents = json.loads((out / "documents.json").read_text(encoding="utf-8"))
    assert list(documents["documents"]) == ["B"]
    assert documents["documents"]["B"]["created"] == "2023-01-10"
    assert documents["documents"]["B"]["finalized_slash"] == "2023/2/20"

    aliases = json.loads((out / "aliases.json").read_text(encoding="utf-8"))
    assert aliases["aliases"] == {"A": "B"}

    manifest = json.loads((out / "manifest.json").read_text(encoding="utf-8"))
    assert set(manifest["datasets"]) == {"documents", "aliases"}
    assert not os.path.exists(out / "mining_errors.txt")

def test_cli_config_file(git_repo, tmp_path):
    config = tmp_path / "settings.yaml"
    config.write_text(f"docs-dir: docs\nid-pattern: '{LETTER_PATTERN}'\n", encoding="utf-8")
    out = tmp_path / "out"
    result = CliRunner().invoke(main, [git_repo, "-o", str(out), "-q", "--config", str(config)])
    assert result.exit_code == 0, result.output
    documents = json.loads((out / "documents.json").read_text(encoding="utf-8"))
    assert list(documents["documents"]) == ["B"]

def test_cli_config_single_terminal_status(git_repo, tmp_path):
    config = tmp_path / "settings.yaml"
    config.write_text(
        f"docs-dir: docs\nid-pattern: '{LETTER_PATTERN}'\nterminal-statuses: Final\n",
        encoding="utf-8",
    )
    out = tmp_path / "out"
    result = CliRunner().invoke(main, [git_repo, "-o", str(out), "-q", "--config", str(config)])
    assert result.exit_code == 0, result.output
    documents = json.loads((out / "documents.json").read_text(encoding="utf-8"))
    assert documents["documents"]["B"]["finalized"] == "2023-02-20"

    dry = CliRunner().invoke(main, [git_repo, "--dry-run", "--no-color", "--config", str(config)])
    assert "Terminal statuses: Final" in dry.output

def test_cli_invalid_ref_fails(git_repo, tmp_path):
    result = CliRunner().invoke(main, [git_repo, "-o", str(tmp_path / "out"), "-q", "--ref", "nope"])
    assert result.exit_code == 1

def test_cli_invalid_pattern_fails(git_repo, tmp_path):
    result = CliRunner().invoke(main, [git_repo, "-o", str(tmp_path / "out"), "-q", "--id-pattern", "("])
    assert result.exit_code == 1
