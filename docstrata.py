#!/usr/bin/env python3
"""
Document History Miner (v1.0.0)

Reconstructs per-document lifecycle metadata from the full commit history of a
document repository. None of these values is recorded in any single commit:

- Creation date (the add event at the root of a document's lineage)
- Last update date
- Last status change date
- Finalization date (transition into a terminal status)
- Alias table redirecting renamed or removed identifiers

Pipeline (single pass, newest commit first):
    Walker -> Tree Differ -> Rename Matcher -> Alias Table -> Metadata Accumulator

Author: Git Lifecycle Team
Version: 1.0.0
"""

import subprocess
import json
import os
import re
import sys
import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple, Union

import click
import psutil
import yaml
from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

colorama_init(autoreset=True)

# Version information
VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"

logger = logging.getLogger(__name__)

ADD = "add"
REMOVE = "remove"
MODIFY = "modify"
RENAME = "rename"

DEFAULT_ID_PATTERN = r"(?P<id>[^/]+)\.md$"
DEFAULT_STATUS_FIELD = "status"
DEFAULT_TERMINAL_STATUSES = ("Final", "Living")
DEFAULT_SIMILARITY_THRESHOLD = 0.5
DEFAULT_WORKERS = 4

# Only this many leading bytes are probed for NUL when deciding text vs binary
BINARY_PROBE_BYTES = 8000


# ============================================================================
# ERRORS
# ============================================================================


class StrataError(Exception):
    """Base class for errors that abort a mining run"""


class ConfigurationError(StrataError):
    """Unreadable repository, reference or setting"""


class HistoryReadError(StrataError):
    """A commit, tree or blob could not be read from the repository"""


# ============================================================================
# DATA STRUCTURES & MODELS
# ============================================================================


@dataclass(frozen=True)
class Commit:
    """A commit on the first-parent chain of a branch"""

    oid: str
    timestamp: int
    tree: str
    parent: Optional[str] = None
    author_name: str = ""
    author_email: str = ""
    subject: str = ""
    repository: Any = field(default=None, compare=False, repr=False)

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, timezone.utc)


@dataclass(frozen=True)
class ChangeRecord:
    """
    One path's change between a commit and its comparison parent.

    current_path/current_blob are None for removals, previous_path/previous_blob
    are None for additions. similarity is only set for renames found by
    content matching.
    """

    type: str
    current_path: Optional[str] = None
    previous_path: Optional[str] = None
    current_blob: Optional[str] = None
    previous_blob: Optional[str] = None
    similarity: Optional[float] = None

    @property
    def path(self) -> str:
        return self.current_path if self.current_path is not None else self.previous_path


@dataclass(frozen=True)
class FrontMatter:
    header: Dict[str, Any]
    body: str


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[FrontMatter, ParseFailure]


@dataclass
class DocumentMetadata:
    """
    Lifecycle metadata for one canonical document identifier.

    Lifecycle fields are write-once: set_if_missing never overwrites a value,
    so the first qualifying commit met by the newest-first walk keeps it.
    """

    identifier: str
    header: Dict[str, Any]
    body: str
    created_at: Optional[datetime] = None
    created_at_commit: Optional[str] = None
    last_updated_at: Optional[datetime] = None
    last_updated_at_commit: Optional[str] = None
    last_status_change_at: Optional[datetime] = None
    last_status_change_at_commit: Optional[str] = None
    finalized_at: Optional[datetime] = None
    finalized_at_commit: Optional[str] = None

    LIFECYCLE_FIELDS = (
        "created_at",
        "last_updated_at",
        "last_status_change_at",
        "finalized_at",
    )

    def set_if_missing(self, name: str, commit: Commit) -> bool:
        if getattr(self, name) is not None:
            return False
        setattr(self, name, commit.date)
        setattr(self, f"{name}_commit", commit.oid)
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "identifier": self.identifier,
            "header": self.header,
        }
        author = self.header.get("author")
        if isinstance(author, str):
            data["authors"] = parse_authors(author)

        for name in self.LIFECYCLE_FIELDS:
            value = getattr(self, name)
            key = name[: -len("_at")]
            data[key] = format_date(value) if value else None
            data[f"{key}_slash"] = format_date_slashed(value) if value else None
            data[f"{key}_commit"] = getattr(self, f"{name}_commit")

        data["body"] = self.body
        return data


@dataclass(frozen=True)
class SkippedRecord:
    commit: str
    path: str
    identifier: str
    reason: str


@dataclass
class MiningStatistics:
    """Counters collected during one walk"""

    commits_processed: int = 0
    records_processed: int = 0
    records_skipped_complete: int = 0
    records_discarded: int = 0
    parse_failures: int = 0
    renames_by_similarity: int = 0
    renames_by_single_pair: int = 0
    removals: int = 0
    lineage_boundaries: int = 0
    alias_cycles: int = 0
    memory_peak_mb: float = 0.0
    total_time: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "commits_processed": self.commits_processed,
            "records_processed": self.records_processed,
            "records_skipped_complete": self.records_skipped_complete,
            "records_discarded": self.records_discarded,
            "parse_failures": self.parse_failures,
            "renames": {
                "by_similarity": self.renames_by_similarity,
                "by_single_pair": self.renames_by_single_pair,
            },
            "removals": self.removals,
            "lineage_boundaries": self.lineage_boundaries,
            "alias_cycles": self.alias_cycles,
            "memory_peak_mb": round(self.memory_peak_mb, 2),
            "total_time_seconds": round(self.total_time, 2),
        }


@dataclass
class MiningResult:
    documents: Dict[str, DocumentMetadata]
    aliases: Dict[str, Optional[str]]
    stats: MiningStatistics
    errors: List[str] = field(default_factory=list)


# ============================================================================
# GIT BACKEND & COMMIT GRAPH WALKER
# ============================================================================


class GitRepository:
    """
    Read-only view of a git repository through the git command line.

    Trees and blobs are cached; read_blob is safe to call from worker threads.
    """

    LOG_FORMAT = "%H%x00%ct%x00%T%x00%P%x00%an%x00%ae%x00%s"

    def __init__(
        self,
        repo_path: str,
        tree_cache_size: int = 8,
        blob_cache_size: int = 1024,
    ):
        self.repo_path = os.path.abspath(repo_path)
        self.name = os.path.basename(self.repo_path.rstrip(os.sep)) or self.repo_path

        if not os.path.isdir(self.repo_path):
            raise ConfigurationError(f"Repository path does not exist: {self.repo_path}")
        try:
            self._git("rev-parse", "--git-dir")
        except HistoryReadError as e:
            raise ConfigurationError(f"Not a git repository: {self.repo_path}") from e

        self.read_tree = lru_cache(maxsize=tree_cache_size)(self._read_tree)
        self.read_blob = lru_cache(maxsize=blob_cache_size)(self._read_blob)

    def __repr__(self) -> str:
        return f"GitRepository({self.repo_path!r})"

    def _git(self, *args: str) -> bytes:
        cmd = ["git", "-C", self.repo_path, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError as e:
            raise ConfigurationError("git executable not found on PATH") from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode("utf-8", errors="replace").strip()
            raise HistoryReadError(f"git {' '.join(args)} failed: {stderr}") from e
        return result.stdout

    def resolve_ref(self, ref: str = "HEAD") -> str:
        """Resolve a branch, tag or commit reference to a commit id"""
        try:
            out = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        except HistoryReadError as e:
            raise ConfigurationError(
                f"Cannot resolve reference '{ref}' in {self.repo_path}"
            ) from e
        return out.decode("ascii").strip()

    def _parse_commit_line(self, line: str) -> Commit:
        """Parse a single commit line from git log"""
        parts = line.split("\x00")
        if len(parts) < 7:
            raise HistoryReadError(
                f"Malformed commit line from {self.repo_path}: {line[:80]!r}"
            )
        oid, timestamp, tree, parents, author_name, author_email = parts[:6]
        try:
            commit_ts = int(timestamp)
        except ValueError as e:
            raise HistoryReadError(f"Bad timestamp for commit {oid}: {timestamp!r}") from e

        parent_ids = parents.split()
        return Commit(
            oid=oid,
            timestamp=commit_ts,
            tree=tree,
            parent=parent_ids[0] if parent_ids else None,
            author_name=author_name,
            author_email=author_email,
            subject="\x00".join(parts[6:]),
            repository=self,
        )

    def iter_commits(self, ref: str = "HEAD") -> Iterator[Commit]:
        """
        Lazily walk the first-parent chain from ref back to the root commit.

        Merge siblings are never visited. Any read failure is fatal, since a
        partial history yields unsound metadata.
        """
        head = self.resolve_ref(ref)
        cmd = [
            "git",
            "-C",
            self.repo_path,
            "log",
            "--first-parent",
            f"--format={self.LOG_FORMAT}",
            head,
        ]
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        try:
            for line in process.stdout:
                line = line.rstrip("\n")
                if line:
                    yield self._parse_commit_line(line)
        finally:
            process.stdout.close()
            stderr = process.stderr.read()
            process.stderr.close()
            process.wait()

        if process.returncode != 0:
            raise HistoryReadError(f"git log failed in {self.repo_path}: {stderr.strip()}")

    def _read_tree(self, treeish: str) -> Dict[str, str]:
        """Map every blob path in a tree snapshot to its object id"""
        out = self._git("ls-tree", "-r", "-z", "--full-tree", treeish)
        entries = {}
        for entry in out.split(b"\x00"):
            if not entry:
                continue
            meta, _, path = entry.partition(b"\t")
            fields = meta.split()
            if len(fields) != 3:
                raise HistoryReadError(f"Malformed tree entry in {treeish}: {entry[:80]!r}")
            _mode, obj_type, oid = fields
            # Submodules show up as "commit" entries
            if obj_type != b"blob":
                continue
            entries[path.decode("utf-8", errors="surrogateescape")] = oid.decode("ascii")
        return entries

    def _read_blob(self, oid: str) -> bytes:
        return self._git("cat-file", "blob", oid)


def collect_history(repositories: Iterable[Any], ref: str = "HEAD") -> List[Commit]:
    """
    Collect the first-parent chains of one or more repositories into a single
    list ordered by committer timestamp, newest first.

    The sort is stable, so commits sharing a timestamp keep their chain order.
    """
    commits: List[Commit] = []
    for repository in repositories:
        commits.extend(repository.iter_commits(ref))
    commits.sort(key=lambda c: c.timestamp, reverse=True)
    return commits


# ============================================================================
# TREE DIFFER
# ============================================================================


def diff_trees(
    current: Dict[str, str], previous: Optional[Dict[str, str]]
) -> List[ChangeRecord]:
    """
    Classify every blob path of two snapshots as added, removed or modified.

    Paths whose blob id is the same in both snapshots produce no record. With
    no previous snapshot (root commit) every path is an add.
    """
    if previous is None:
        return [
            ChangeRecord(ADD, current_path=path, current_blob=oid)
            for path, oid in sorted(current.items())
        ]

    records = []
    for path in sorted(current.keys() | previous.keys()):
        current_oid = current.get(path)
        previous_oid = previous.get(path)
        if previous_oid is None:
            records.append(ChangeRecord(ADD, current_path=path, current_blob=current_oid))
        elif current_oid is None:
            records.append(
                ChangeRecord(REMOVE, previous_path=path, previous_blob=previous_oid)
            )
        elif current_oid != previous_oid:
            records.append(
                ChangeRecord(
                    MODIFY,
                    current_path=path,
                    previous_path=path,
                    current_blob=current_oid,
                    previous_blob=previous_oid,
                )
            )
    return records


class DocumentLocator:
    """Decide which blob paths are tracked documents and extract their identifiers"""

    def __init__(self, docs_dir: str = "", id_pattern: str = DEFAULT_ID_PATTERN):
        self.docs_dir = (docs_dir or "").strip("/")
        try:
            self.pattern = re.compile(id_pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid identifier pattern {id_pattern!r}: {e}") from e
        if "id" not in self.pattern.groupindex:
            raise ConfigurationError(
                f"Identifier pattern {id_pattern!r} needs a named group 'id'"
            )

    def identifier_for(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        if self.docs_dir and not path.startswith(self.docs_dir + "/"):
            return None
        match = self.pattern.search(path.rsplit("/", 1)[-1])
        return match.group("id") if match else None

    def is_document(self, record: ChangeRecord) -> bool:
        return self.identifier_for(record.path) is not None


# ============================================================================
# RENAME MATCHER
# ============================================================================


def looks_binary(content: bytes) -> bool:
    """NUL byte in the leading sample means the blob is not text"""
    return b"\x00" in content[:BINARY_PROBE_BYTES]


def jaccard(lines_a: FrozenSet[str], lines_b: FrozenSet[str]) -> float:
    union = len(lines_a | lines_b)
    if union == 0:
        return 0.0
    return len(lines_a & lines_b) / union


def line_similarity(text_a: str, text_b: str) -> float:
    """Jaccard similarity of the two texts' sets of lines"""
    return jaccard(frozenset(text_a.splitlines()), frozenset(text_b.splitlines()))


class RenameMatcher:
    """
    Pair a commit's added and removed document paths into renames.

    Candidate pairs need a line-set similarity of at least the threshold; the
    best-scoring pair is committed first and both of its paths leave the
    pool, until no candidate remains. A commit with exactly one add and one
    remove is a rename without scoring.
    """

    def __init__(
        self,
        read_blob: Callable[[str], bytes],
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        map_fn: Callable = map,
    ):
        self.read_blob = read_blob
        self.threshold = threshold
        self.map_fn = map_fn

    def _line_set(self, oid: str) -> Optional[FrozenSet[str]]:
        content = self.read_blob(oid)
        if looks_binary(content):
            return None
        return frozenset(content.decode("utf-8", errors="replace").splitlines())

    def score_pairs(
        self, added: List[ChangeRecord], removed: List[ChangeRecord]
    ) -> List[Tuple[float, ChangeRecord, ChangeRecord]]:
        """Return (similarity, removed, added) for every pair above the threshold"""
        oids = sorted({r.current_blob for r in added} | {r.previous_blob for r in removed})
        line_sets = dict(zip(oids, self.map_fn(self._line_set, oids)))

        pairs = [
            (rem, add)
            for add in added
            for rem in removed
            if line_sets[add.current_blob] is not None
            and line_sets[rem.previous_blob] is not None
        ]
        scores = self.map_fn(
            lambda pair: jaccard(
                line_sets[pair[0].previous_blob], line_sets[pair[1].current_blob]
            ),
            pairs,
        )
        return [
            (score, rem, add)
            for score, (rem, add) in zip(scores, pairs)
            if score >= self.threshold
        ]

    def match(self, records: Iterable[ChangeRecord]) -> List[ChangeRecord]:
        records = list(records)
        added = [r for r in records if r.type == ADD]
        removed = [r for r in records if r.type == REMOVE]
        passthrough = [r for r in records if r.type not in (ADD, REMOVE)]

        if len(added) == 1 and len(removed) == 1:
            return passthrough + [_rename(removed[0], added[0], None)]
        if not added or not removed:
            return records

        candidates = sorted(
            self.score_pairs(added, removed),
            key=lambda c: (-c[0], c[1].previous_path, c[2].current_path),
        )
        renames = []
        used_added: Set[str] = set()
        used_removed: Set[str] = set()
        for score, rem, add in candidates:
            if rem.previous_path in used_removed or add.current_path in used_added:
                continue
            used_removed.add(rem.previous_path)
            used_added.add(add.current_path)
            renames.append(_rename(rem, add, score))

        return (
            passthrough
            + renames
            + [r for r in added if r.current_path not in used_added]
            + [r for r in removed if r.previous_path not in used_removed]
        )


def _rename(removed: ChangeRecord, added: ChangeRecord, similarity: Optional[float]) -> ChangeRecord:
    return ChangeRecord(
        RENAME,
        current_path=added.current_path,
        previous_path=removed.previous_path,
        current_blob=added.current_blob,
        previous_blob=removed.previous_blob,
        similarity=similarity,
    )


# ============================================================================
# IDENTITY RESOLVER
# ============================================================================


class AliasTable:
    """
    Retired identifier -> successor identifier, or None once removed.

    Entries are write-once (the newest rename or removal met by the walk is
    authoritative) and a registration that would close a cycle is refused.
    """

    def __init__(self, aliases: Optional[Dict[str, Optional[str]]] = None):
        self._aliases: Dict[str, Optional[str]] = dict(aliases or {})
        self.cycles_detected = 0

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)

    def get(self, identifier: str) -> Optional[str]:
        return self._aliases.get(identifier)

    def register_removal(self, identifier: str) -> bool:
        if identifier in self._aliases:
            return False
        self._aliases[identifier] = None
        return True

    def register_rename(self, old: str, new: str) -> bool:
        if old == new or old in self._aliases:
            return False
        if self.resolve(new) == old:
            logger.warning(f"Refusing alias {old} -> {new}: it would form a cycle")
            self.cycles_detected += 1
            return False
        self._aliases[old] = new
        return True

    def resolve(self, identifier: Optional[str]) -> Optional[str]:
        """
        Follow the alias chain to the current identifier.

        Returns None when the document was removed or when the chain does not
        terminate within len(table) + 1 steps.
        """
        current = identifier
        for _ in range(len(self._aliases) + 1):
            if current is None or current not in self._aliases:
                return current
            current = self._aliases[current]
        logger.warning(f"Alias cycle detected while resolving {identifier}; dropping it")
        self.cycles_detected += 1
        return None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return dict(sorted(self._aliases.items()))


# ============================================================================
# FRONT-MATTER PARSER
# ============================================================================

LOOSE_DATE_RE = re.compile(r"^(\d+)-(\d+)-(\d+)$")


def split_front_matter(text: str) -> Optional[Tuple[str, str]]:
    """Split '---' delimited front matter from the body; None when absent"""
    lines = text.lstrip("\ufeff").splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return None
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return "".join(lines[1:index]), "".join(lines[index + 1 :])
    return None


def _coerce_loose_dates(header: Dict[str, Any]) -> None:
    # YAML only recognises zero-padded dates, so 2023-1-5 arrives as a string
    for key, value in header.items():
        if not isinstance(value, str):
            continue
        match = LOOSE_DATE_RE.match(value.strip())
        if not match:
            continue
        try:
            header[key] = date(*(int(part) for part in match.groups()))
        except ValueError:
            pass


def parse_front_matter(text: str) -> ParseResult:
    """
    Parse a document into its YAML header and body.

    Never raises: malformed input yields a ParseFailure describing why.
    """
    parts = split_front_matter(text)
    if parts is None:
        return ParseFailure("no front matter block")
    raw_header, body = parts

    try:
        header = yaml.safe_load(raw_header)
    except (yaml.YAMLError, ValueError, OverflowError) as e:
        return ParseFailure(f"invalid YAML header: {e}")

    if header is None:
        header = {}
    if not isinstance(header, dict):
        return ParseFailure(f"header is a {type(header).__name__}, not a mapping")

    header = {str(key): value for key, value in header.items()}
    _coerce_loose_dates(header)
    return FrontMatter(header=header, body=body)


# ============================================================================
# METADATA ACCUMULATOR
# ============================================================================


class MetadataAccumulator:
    """
    Fold add/modify/rename records into per-document lifecycle metadata.

    Records must arrive newest commit first. An identifier enters the
    completion set once every field it needs is known; later records for it
    are skipped and listed in `skipped`.
    """

    def __init__(
        self,
        aliases: AliasTable,
        parse_blob: Callable[[Commit, str], ParseResult],
        status_field: str = DEFAULT_STATUS_FIELD,
        terminal_statuses: Iterable[str] = DEFAULT_TERMINAL_STATUSES,
        skip_statuses: Iterable[str] = (),
        stats: Optional[MiningStatistics] = None,
    ):
        self.aliases = aliases
        self.parse_blob = parse_blob
        self.status_field = status_field
        self.terminal_statuses = frozenset(terminal_statuses)
        self.skip_statuses = frozenset(skip_statuses)
        self.stats = stats or MiningStatistics()
        self.documents: Dict[str, DocumentMetadata] = {}
        self.completed: Set[str] = set()
        self.skipped: List[SkippedRecord] = []
        self.errors: List[str] = []

    def status_of(self, header: Dict[str, Any]) -> Optional[str]:
        value = header.get(self.status_field)
        return None if value is None else str(value)

    def is_terminal(self, status: Optional[str]) -> bool:
        return status in self.terminal_statuses

    def is_complete(self, entry: DocumentMetadata) -> bool:
        if entry.last_updated_at is None or entry.created_at is None:
            return False
        if entry.last_status_change_at is None:
            return False
        if self.is_terminal(self.status_of(entry.header)) and entry.finalized_at is None:
            return False
        return True

    def is_settled(self, identifier: Optional[str]) -> bool:
        """True when records for this identifier can no longer change anything"""
        return identifier is None or identifier in self.completed

    def close(self, identifier: str, commit: Commit) -> None:
        """Stop accepting records for an identifier whose older history belongs to another lineage"""
        if identifier not in self.completed:
            logger.info(
                f"{commit.oid[:10]}: lineage boundary for {identifier}; "
                f"older records belong to a previous document"
            )
            self.completed.add(identifier)
            self.stats.lineage_boundaries += 1

    def _report_failure(self, commit: Commit, path: str, failure: ParseFailure) -> None:
        message = f"{commit.oid}: {path}: {failure.reason}"
        logger.warning(f"Skipping unparsable document {message}")
        self.errors.append(message)
        self.stats.parse_failures += 1

    def _needs_previous(self, entry: DocumentMetadata, status: Optional[str]) -> bool:
        if entry.last_status_change_at is None:
            return True
        return self.is_terminal(status) and entry.finalized_at is None

    def apply(
        self, commit: Commit, record: ChangeRecord, identifier: Optional[str]
    ) -> Optional[DocumentMetadata]:
        """
        Fold one record into the metadata table.

        Args:
            commit: Commit the record belongs to
            record: An add, modify or rename record for a document path
            identifier: Identifier extracted from record.current_path

        Returns:
            The updated entry, or None when the record was skipped
        """
        resolved = self.aliases.resolve(identifier)
        if resolved is None:
            logger.debug(f"{commit.oid[:10]}: {record.path} resolves to a removed document")
            self.stats.records_discarded += 1
            return None
        if resolved in self.completed:
            logger.debug(f"{commit.oid[:10]}: {record.path} skipped, {resolved} is complete")
            self.skipped.append(SkippedRecord(commit.oid, record.path, resolved, "complete"))
            self.stats.records_skipped_complete += 1
            return None

        current = self.parse_blob(commit, record.current_blob)
        if isinstance(current, ParseFailure):
            self._report_failure(commit, record.current_path, current)
            return None

        status = self.status_of(current.header)
        if status in self.skip_statuses:
            logger.debug(f"{commit.oid[:10]}: {record.path} has status {status}, skipping")
            return None

        entry = self.documents.get(resolved)
        if entry is None:
            entry = DocumentMetadata(
                identifier=resolved, header=dict(current.header), body=current.body
            )
            self.documents[resolved] = entry

        is_add = record.type == ADD
        previous_status = None
        # An add has no previous version: its status is compared against nothing
        comparable = is_add
        if not is_add and self._needs_previous(entry, status):
            previous = self.parse_blob(commit, record.previous_blob)
            if isinstance(previous, ParseFailure):
                self._report_failure(commit, record.previous_path, previous)
            else:
                previous_status = self.status_of(previous.header)
                comparable = True

        eligible = {
            "last_updated_at": True,
            "created_at": is_add,
            "last_status_change_at": comparable and status != previous_status,
            "finalized_at": comparable
            and self.is_terminal(status)
            and not self.is_terminal(previous_status),
        }
        for name, allowed in eligible.items():
            if allowed:
                entry.set_if_missing(name, commit)

        if self.is_complete(entry):
            self.completed.add(resolved)
        return entry

    def finalize(self) -> Dict[str, DocumentMetadata]:
        """Drop entries that an alias redirects elsewhere and return the table"""
        documents = {}
        for identifier in sorted(self.documents):
            if self.aliases.resolve(identifier) != identifier:
                logger.debug(f"Pruning {identifier}: superseded by an alias")
                continue
            documents[identifier] = self.documents[identifier]
        return documents


# ============================================================================
# PERFORMANCE MONITORING
# ============================================================================


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0

    def check_memory(self) -> float:
        """Get current memory usage in MB"""
        process = psutil.Process(os.getpid())
        memory_mb = process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Console output for CLI runs.

    Stage lines are coloured with colorama. The commit walk gets a tqdm bar
    whose postfix tracks how many documents, aliases and completed documents
    the walk has found so far.
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self._stage_started: Dict[str, float] = {}

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{Style.RESET_ALL}" if self.use_colors else text

    def stage_start(self, stage_name: str, message: str = ""):
        if self.quiet:
            return
        self._stage_started[stage_name] = time.time()
        line = self._paint(f"▶ {stage_name}", Fore.BLUE + Style.BRIGHT)
        print(f"{line}  {message}" if message else line)

    def stage_complete(self, stage_name: str, stats: Optional[Dict[str, Any]] = None):
        if self.quiet:
            return
        elapsed = time.time() - self._stage_started.pop(stage_name, time.time())
        print(self._paint(f"✔ {stage_name} ({elapsed:.2f}s)", Fore.GREEN))

        if stats and self.verbose:
            width = max(len(key) for key in stats)
            for key, value in stats.items():
                print(f"    {key:<{width}}  {value}")

    def commit_bar(self, total: int) -> Optional[tqdm]:
        if self.quiet:
            return None
        return tqdm(
            total=total,
            desc=self._paint("Walking history", Fore.CYAN),
            unit=" commits",
            dynamic_ncols=True,
        )

    def advance(self, bar: Optional[tqdm], documents: int, aliases: int, completed: int):
        """Step the commit bar and refresh its running counts"""
        if bar is None:
            return
        bar.set_postfix(docs=documents, aliases=aliases, complete=completed, refresh=False)
        bar.update(1)

    def info(self, message: str):
        if not self.quiet:
            print(f"{self._paint('·', Fore.BLUE)} {message}")

    def warning(self, message: str):
        if not self.quiet:
            print(self._paint(f"! {message}", Fore.YELLOW + Style.BRIGHT))

    def error(self, message: str):
        """Always shown, on stderr"""
        print(self._paint(f"✖ {message}", Fore.RED + Style.BRIGHT), file=sys.stderr)

    def success(self, message: str):
        if not self.quiet:
            print(self._paint(message, Fore.GREEN + Style.BRIGHT))

    def summary(self, result: MiningResult, output_dir: str):
        """Per-run breakdown of what the walk found"""
        if self.quiet:
            return
        documents = result.documents.values()
        finalized = sum(1 for d in documents if d.finalized_at is not None)
        without_created = sum(1 for d in documents if d.created_at is None)
        removed = sum(1 for target in result.aliases.values() if target is None)
        stats = result.stats

        rows = [
            ("Commits walked", f"{stats.commits_processed:,}"),
            ("Documents", f"{len(result.documents):,} ({finalized:,} finalized)"),
            ("Without creation date", f"{without_created:,}"),
            ("Renamed identifiers", f"{len(result.aliases) - removed:,}"),
            ("Removed identifiers", f"{removed:,}"),
            ("Lineage boundaries", f"{stats.lineage_boundaries:,}"),
            ("Parse failures", f"{stats.parse_failures:,}"),
            ("Output", output_dir),
        ]
        width = max(len(label) for label, _ in rows)
        print(self._paint("\nDocument history", Fore.MAGENTA + Style.BRIGHT))
        for label, value in rows:
            print(f"  {label:<{width}}  {value}")
        print(self._paint(f"  {'Elapsed':<{width}}  {time.time() - self.start_time:.2f}s", Fore.YELLOW))


# ============================================================================
# CORE MINER
# ============================================================================


class DocumentHistoryMiner:
    """
    Single-pass driver over the merged newest-first history.

    Owns the alias table, the metadata table and the completion set. Worker
    threads only read blobs and score rename candidates for the commit at
    hand; every mutation happens here, in commit order.
    """

    MEMORY_CHECK_INTERVAL = 500

    def __init__(
        self,
        repositories: List[Any],
        locator: Optional[DocumentLocator] = None,
        ref: str = "HEAD",
        status_field: str = DEFAULT_STATUS_FIELD,
        terminal_statuses: Iterable[str] = DEFAULT_TERMINAL_STATUSES,
        skip_statuses: Iterable[str] = (),
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        workers: int = DEFAULT_WORKERS,
        reporter: Optional[ProgressReporter] = None,
        memory_limit_mb: Optional[float] = None,
    ):
        if not repositories:
            raise ConfigurationError("At least one repository is required")
        self.repositories = list(repositories)
        self.locator = locator or DocumentLocator()
        self.ref = ref
        self.similarity_threshold = similarity_threshold
        self.workers = max(1, int(workers))
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.memory_monitor = MemoryMonitor(limit_mb=memory_limit_mb)

        self.stats = MiningStatistics()
        self.aliases = AliasTable()
        self.accumulator = MetadataAccumulator(
            self.aliases,
            self._parse_blob,
            status_field=status_field,
            terminal_statuses=terminal_statuses,
            skip_statuses=skip_statuses,
            stats=self.stats,
        )
        self._parse_cached = lru_cache(maxsize=512)(self._parse_uncached)

    @property
    def errors(self) -> List[str]:
        return self.accumulator.errors

    def _parse_uncached(self, repository: Any, oid: str) -> ParseResult:
        content = repository.read_blob(oid)
        return parse_front_matter(content.decode("utf-8", errors="replace"))

    def _parse_blob(self, commit: Commit, oid: str) -> ParseResult:
        return self._parse_cached(commit.repository, oid)

    def mine(self) -> MiningResult:
        """Walk the full history once and return documents and aliases"""
        start_time = time.time()
        self.reporter.stage_start("History Walk", "Collecting first-parent history...")

        commits = collect_history(self.repositories, self.ref)
        progress_bar = self.reporter.commit_bar(len(commits))

        executor = ThreadPoolExecutor(max_workers=self.workers) if self.workers > 1 else None
        map_fn = executor.map if executor else map
        try:
            for commit in commits:
                self._process_commit(commit, map_fn)
                self.stats.commits_processed += 1

                self.reporter.advance(
                    progress_bar,
                    len(self.accumulator.documents),
                    len(self.aliases),
                    len(self.accumulator.completed),
                )
                if self.stats.commits_processed % self.MEMORY_CHECK_INTERVAL == 0:
                    memory_mb = self.memory_monitor.check_memory()
                    if self.reporter.verbose:
                        self.reporter.info(f"Memory usage: {memory_mb:.1f} MB")
        finally:
            if executor:
                executor.shutdown(wait=True)
            if progress_bar:
                progress_bar.close()

        documents = self.accumulator.finalize()
        self.stats.alias_cycles = self.aliases.cycles_detected
        self.stats.memory_peak_mb = self.memory_monitor.get_peak()
        self.stats.total_time = time.time() - start_time

        self.reporter.stage_complete(
            "History Walk",
            {
                "Commits processed": f"{self.stats.commits_processed:,}",
                "Documents": f"{len(documents):,}",
                "Aliases": f"{len(self.aliases):,}",
                "Parse failures": f"{self.stats.parse_failures:,}",
            },
        )
        return MiningResult(
            documents=documents,
            aliases=self.aliases.to_dict(),
            stats=self.stats,
            errors=list(self.errors),
        )

    def _process_commit(self, commit: Commit, map_fn: Callable = map):
        repository = commit.repository
        current_tree = repository.read_tree(commit.oid)
        previous_tree = repository.read_tree(commit.parent) if commit.parent else None

        records = [
            r for r in diff_trees(current_tree, previous_tree) if self.locator.is_document(r)
        ]
        if not records:
            return

        matcher = RenameMatcher(repository.read_blob, self.similarity_threshold, map_fn)
        changes = matcher.match(records)
        self._log_unpaired(commit, records, changes)
        self._register_aliases(commit, changes)

        updates = [c for c in changes if c.type in (ADD, MODIFY, RENAME)]
        identifiers = [self.locator.identifier_for(c.current_path) for c in updates]

        # Parse the blobs still needed concurrently; results land in the parse cache
        wanted = sorted(
            {
                c.current_blob
                for c, ident in zip(updates, identifiers)
                if not self.accumulator.is_settled(self.aliases.resolve(ident))
            }
        )
        list(map_fn(lambda oid: self._parse_blob(commit, oid), wanted))

        for change, identifier in zip(updates, identifiers):
            self.accumulator.apply(commit, change, identifier)
            self.stats.records_processed += 1

    def _log_unpaired(
        self, commit: Commit, records: List[ChangeRecord], changes: List[ChangeRecord]
    ):
        # Only commits with both adds and removes had rename candidates to weigh
        types = {r.type for r in records}
        if ADD not in types or REMOVE not in types:
            return
        for change in changes:
            if change.type in (ADD, REMOVE):
                logger.debug(
                    f"{commit.oid[:10]}: {change.path} kept as {change.type}, no rename "
                    f"candidate reached {self.similarity_threshold:.2f}"
                )

    def _register_aliases(self, commit: Commit, changes: List[ChangeRecord]):
        """Record renames, then removals, of this commit in the alias table"""
        renames = [c for c in changes if c.type == RENAME]
        removals = [c for c in changes if c.type == REMOVE]

        for change in renames:
            old = self.locator.identifier_for(change.previous_path)
            new = self.locator.identifier_for(change.current_path)
            if change.similarity is None:
                self.stats.renames_by_single_pair += 1
            else:
                self.stats.renames_by_similarity += 1
            logger.debug(
                f"{commit.oid[:10]}: rename {change.previous_path} -> {change.current_path}"
                + (f" (similarity {change.similarity:.2f})" if change.similarity is not None else "")
            )
            if old == new:
                continue
            if old in self.accumulator.documents:
                self.accumulator.close(old, commit)
                continue
            self.aliases.register_rename(old, new)

        for change in removals:
            old = self.locator.identifier_for(change.previous_path)
            self.stats.removals += 1
            if old in self.accumulator.documents:
                self.accumulator.close(old, commit)
                continue
            if self.aliases.register_removal(old):
                logger.debug(f"{commit.oid[:10]}: {change.previous_path} removed, {old} retired")
            else:
                logger.debug(
                    f"{commit.oid[:10]}: {change.previous_path} removed, "
                    f"{old} already aliased to {self.aliases.get(old)}"
                )


# ============================================================================
# EXPORT HELPERS
# ============================================================================

AUTHOR_EMAIL_RE = re.compile(r"<([^>]*)>")
AUTHOR_GITHUB_RE = re.compile(r"\(@([\w-]+)\)")


def format_date(value: Union[date, datetime, str]) -> str:
    """ISO calendar date, e.g. 2023-04-07"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime("%Y-%m-%d")


def format_date_slashed(value: Union[date, datetime, str]) -> str:
    """Unpadded slash form, e.g. 2023/4/7"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return f"{value.year}/{value.month}/{value.day}"


def _split_authors(author_line: str) -> List[str]:
    parts, current, depth, quoted = [], [], 0, False
    for char in author_line:
        if char == '"':
            quoted = not quoted
        elif char in "<(" and not quoted:
            depth += 1
        elif char in ">)" and not quoted:
            depth = max(0, depth - 1)
        if char == "," and depth == 0 and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def parse_authors(author_line: str) -> List[Dict[str, str]]:
    """
    Split an author line such as
    'Alice (@alice), Bob <bob@example.com>, Carol' into records.
    """
    authors = []
    for part in _split_authors(author_line):
        email = AUTHOR_EMAIL_RE.search(part)
        github = AUTHOR_GITHUB_RE.search(part)
        name = AUTHOR_GITHUB_RE.sub("", AUTHOR_EMAIL_RE.sub("", part)).strip().strip('"')

        author = {"name": name}
        if email:
            author["email"] = email.group(1).strip()
        if github:
            author["github"] = github.group(1)
        authors.append(author)
    return authors


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def _write_json(data: Dict, output_path: str):
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=_json_default)


def export_documents(result: MiningResult, output_path: str) -> Dict:
    data = {
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "total_documents": len(result.documents),
        "documents": {
            identifier: entry.to_dict() for identifier, entry in result.documents.items()
        },
    }
    _write_json(data, output_path)
    return data


def export_aliases(result: MiningResult, output_path: str) -> Dict:
    data = {
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "total_aliases": len(result.aliases),
        "aliases": result.aliases,
    }
    _write_json(data, output_path)
    return data


def generate_manifest(
    output_dir: str,
    result: MiningResult,
    repositories: List[str],
    datasets: Dict[str, str],
) -> Dict:
    """Generate manifest.json with dataset checksums and run statistics"""
    manifest = {
        "generator_version": VERSION,
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "repositories": repositories,
        "statistics": result.stats.to_dict(),
        "datasets": {},
    }

    for dataset_name, file_path in datasets.items():
        full_path = os.path.join(output_dir, file_path)
        if os.path.exists(full_path):
            with open(full_path, "rb") as f:
                data = f.read()

            manifest["datasets"][dataset_name] = {
                "file": file_path,
                "schema_version": SCHEMA_VERSION,
                "file_size_bytes": len(data),
                "sha256": hashlib.sha256(data).hexdigest(),
            }

    _write_json(manifest, os.path.join(output_dir, "manifest.json"))
    return manifest


# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG_FILE_NAMES = (".docstrata.yaml", ".docstrata.yml", ".docstrata.json")

PRESETS = {
    "eips": {
        "docs_dir": "EIPS",
        "id_pattern": r"eip-(?P<id>\w+)\.md$",
        "status_field": "status",
        "terminal_statuses": ["Final", "Living"],
        "skip_statuses": ["Moved"],
    },
    "markdown": {
        "docs_dir": "",
        "id_pattern": DEFAULT_ID_PATTERN,
    },
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must hold a mapping: {config_path}")
    return data


def find_config_file(repo_path: Optional[str]) -> Optional[str]:
    """Look for .docstrata.yaml/.yml/.json in the repository, then the current directory"""
    search_paths = [p for p in (repo_path, os.getcwd()) if p]

    for search_dir in search_paths:
        for config_name in CONFIG_FILE_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path

    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: Optional[str],
    ):
        # Unset click options arrive as None, or () for multiple=True options
        self.cli = {k: v for k, v in cli_args.items() if v is not None and v != ()}
        self.config = {}
        self.config_source = None

        if config_path:
            self.config = load_config_file(config_path)
            self.config_source = config_path
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.config_source = auto_path
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning(f"Found config file {auto_path} but failed to load it: {e}")

        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        final_preset_name = preset_name or self.config.get("preset")
        if final_preset_name and final_preset_name not in PRESETS:
            raise ConfigurationError(f"Unknown preset: {final_preset_name}")
        self.preset = PRESETS.get(final_preset_name, {}) if final_preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default

    def get_list(self, key: str, default: Iterable[str] = ()) -> List[str]:
        """Resolve a multi-valued setting; a single scalar becomes a one-item list"""
        value = self.get(key, default)
        if value is None:
            return []
        if isinstance(value, (str, int, float)):
            return [str(value)]
        return [str(item) for item in value]


def configure_logging(quiet: bool = False, verbose: bool = False):
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


# ============================================================================
# CLI INTERFACE
# ============================================================================


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "repo_paths",
    nargs=-1,
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
)
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False),
    help="Output directory (default: docstrata_output_TIMESTAMP)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use a predefined document layout",
)
@click.option("--ref", help="Branch, tag or commit to walk back from (default: HEAD)")
@click.option("--docs-dir", help="Directory holding the tracked documents")
@click.option("--id-pattern", help="Regex with a named group 'id' matched on file names")
@click.option("--status-field", help="Front-matter field holding the status")
@click.option(
    "--terminal-status",
    "terminal_statuses",
    multiple=True,
    help="Status counted as finalized (repeatable)",
)
@click.option(
    "--skip-status",
    "skip_statuses",
    multiple=True,
    help="Status whose versions are ignored, e.g. stubs (repeatable)",
)
@click.option(
    "--similarity-threshold",
    type=click.FloatRange(0.0, 1.0),
    help="Minimum line-set similarity for a rename (default: 0.5)",
)
@click.option("--workers", type=click.IntRange(min=1), help="Threads per commit (default: 4)")
@click.option("--memory-limit", type=float, help="Memory limit in MB")
@click.option(
    "-q", "--quiet", is_flag=True, default=None, help="Suppress progress output"
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=None,
    help="Show detailed progress and debug logging",
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Show the resolved settings without walking history",
)
@click.version_option(version=VERSION)
def main(repo_paths, output, config, preset, **kwargs):
    """
    Document History Miner - derive created / last-updated / last-status-change /
    finalized dates and rename aliases for every document in one or more git
    repositories.
    """
    if not repo_paths:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(2)

    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_paths[0])
    except (ConfigurationError, OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter().error(f"Invalid configuration: {e}")
        sys.exit(1)

    quiet = resolver.get("quiet", False)
    verbose = resolver.get("verbose", False)
    no_color = resolver.get("no_color", False)
    dry_run = resolver.get("dry_run", False)

    configure_logging(quiet=quiet, verbose=verbose)
    reporter = ProgressReporter(quiet=quiet, verbose=verbose, use_colors=not no_color)
    if resolver.config_source:
        reporter.info(f"Using configuration: {resolver.config_source}")

    ref = resolver.get("ref", "HEAD")
    docs_dir = resolver.get("docs_dir", "")
    id_pattern = resolver.get("id_pattern", DEFAULT_ID_PATTERN)
    status_field = resolver.get("status_field", DEFAULT_STATUS_FIELD)
    terminal_statuses = resolver.get_list("terminal_statuses", DEFAULT_TERMINAL_STATUSES)
    skip_statuses = resolver.get_list("skip_statuses")
    similarity_threshold = float(
        resolver.get("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD)
    )
    workers = int(resolver.get("workers", DEFAULT_WORKERS))
    memory_limit = resolver.get("memory_limit")

    if dry_run:
        reporter.info("DRY RUN MODE - No history will be walked")
        for repo_path in repo_paths:
            reporter.info(f"Repository: {repo_path}")
        reporter.info(f"Reference: {ref}")
        reporter.info(f"Documents: {docs_dir or '.'}/ matching {id_pattern}")
        reporter.info(f"Status field: {status_field}")
        reporter.info(f"Terminal statuses: {', '.join(terminal_statuses)}")
        if skip_statuses:
            reporter.info(f"Skipped statuses: {', '.join(skip_statuses)}")
        reporter.info(f"Similarity threshold: {similarity_threshold}")
        reporter.info(f"Workers: {workers}")
        reporter.info("\nDatasets to generate:")
        reporter.info("  ✓ documents.json")
        reporter.info("  ✓ aliases.json")
        reporter.info("  ✓ manifest.json")
        return

    output = output or resolver.get("output")
    if output:
        output_dir = output
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = f"docstrata_output_{timestamp}"

    try:
        reporter.stage_start("Initialization", f"Opening {len(repo_paths)} repositories")
        repositories = [GitRepository(path) for path in repo_paths]
        locator = DocumentLocator(docs_dir, id_pattern)
        miner = DocumentHistoryMiner(
            repositories,
            locator=locator,
            ref=ref,
            status_field=status_field,
            terminal_statuses=terminal_statuses,
            skip_statuses=skip_statuses,
            similarity_threshold=similarity_threshold,
            workers=workers,
            reporter=reporter,
            memory_limit_mb=memory_limit,
        )
        reporter.stage_complete("Initialization")

        result = miner.mine()

        os.makedirs(output_dir, exist_ok=True)
        reporter.stage_start("Export", f"Writing datasets to {output_dir}")
        export_documents(result, os.path.join(output_dir, "documents.json"))
        export_aliases(result, os.path.join(output_dir, "aliases.json"))
        datasets = {"documents": "documents.json", "aliases": "aliases.json"}
        generate_manifest(output_dir, result, list(repo_paths), datasets)

        if result.errors:
            with open(
                os.path.join(output_dir, "mining_errors.txt"), "w", encoding="utf-8"
            ) as f:
                f.write("\n".join(result.errors))
            reporter.warning("Errors logged to mining_errors.txt")
        reporter.stage_complete("Export")

    except (StrataError, MemoryError, OSError) as e:
        reporter.error(f"Mining failed: {e}")
        if verbose:
            logger.exception("Mining failed")
        sys.exit(1)

    reporter.summary(result, output_dir)
    reporter.success(f"Mining complete! Results saved to: {output_dir}")


if __name__ == "__main__":
    main()
