"""Operation layer: one method per repository operation.

Every operation follows the same path: the request context names the
workspace, the resolver turns the repository name into a locked directory
handle, the executor runs git there, and a parser turns the output into
records.  Read-only operations hold the repository's shared lock, mutating
operations its exclusive lock.

Nothing here knows about HTTP; the Flask layer (``git_rest.api``) maps
requests onto these methods and errors onto status codes.
"""

from __future__ import annotations

import logging
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Optional, TypeVar

from git_rest.address import local_paths, parse_address
from git_rest.atomic_io import atomic_copy
from git_rest.config import Settings
from git_rest.constants import DEFAULT_REMOTE, DEFAULT_REVISION
from git_rest.errors import (
    AlreadyExists,
    FilesystemError,
    GitRestError,
    InvalidRequest,
    NotFound,
    classify_tool_failure,
)
from git_rest.executor import CommandResult, GitExecutor, write_identity_config
from git_rest.fs_tree import read_path, resolve_in_repo
from git_rest.parsers import (
    BRANCH_FORMAT,
    LOG_ARGS,
    parse_branches,
    parse_commit_show,
    parse_commit_summary,
    parse_config_values,
    parse_log,
    parse_ls_tree,
    parse_remotes,
    subtree_at,
)
from git_rest.records import (
    BranchInfo,
    CommitRecord,
    CommitSummary,
    FsEntry,
    RemoteInfo,
    TreeEntry,
)
from git_rest.repository import Repository, RepositoryLocks, RepositoryResolver
from git_rest.validate import (
    normalize_repo_path,
    validate_branch_name,
    validate_commit_ref,
    validate_config_key,
    validate_pathspec,
    validate_remote_name,
    validate_repo_name,
    validate_revision,
)
from git_rest.workspace import Workspace, WorkspaceManager

T = TypeVar("T")

# ``git config --get-all`` exit status for an unset option.
_CONFIG_KEY_MISSING = 1
# ``git config --unset`` exit status for an unset option.
_CONFIG_UNSET_MISSING = 5


def _text(parse: Callable[[str], T]) -> Callable[[CommandResult], T]:
    return lambda result: parse(result.text)


def _within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


@dataclass(frozen=True)
class RequestContext:
    """Everything an operation needs to know about its caller."""

    workspace: Workspace
    request_id: str = ""
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("git_rest.service")
    )


class GitService:
    """Repository operations scoped to a caller's workspace."""

    def __init__(
        self,
        settings: Settings,
        executor: Optional[GitExecutor] = None,
        workspaces: Optional[WorkspaceManager] = None,
        resolver: Optional[RepositoryResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.executor = executor or GitExecutor(
            git_binary=settings.git_binary,
            timeout=settings.command_timeout,
            gitconfig_path=settings.gitconfig_path,
            logger=logging.getLogger("git_rest.executor"),
        )
        self.workspaces = workspaces or WorkspaceManager(
            settings.root_dir, settings.secret_key,
        )
        self.resolver = resolver or RepositoryResolver(
            RepositoryLocks(settings.locks_dir, timeout=settings.lock_timeout),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self) -> Optional[str]:
        """Prepare the service root and report the git version.

        Returns:
            The git version string, or None if git could not be run.
        """
        try:
            self.settings.locks_dir.mkdir(parents=True, exist_ok=True)
            write_identity_config(
                self.settings.gitconfig_path,
                self.settings.author_name,
                self.settings.author_email,
            )
        except OSError as exc:
            raise FilesystemError(
                f"Cannot prepare root dir {self.settings.root_dir}: {exc.strerror or exc}"
            )
        try:
            version = self.executor.version()
        except GitRestError as exc:
            self.logger.warning("git version: error: %s", exc)
            return None
        self.logger.info("git version: %s", version)
        return version

    def open_context(
        self,
        token: Optional[str],
        request_id: str = "",
    ) -> tuple[RequestContext, bool]:
        """Resolve the caller's workspace.

        Returns:
            ``(context, issued)``; see ``WorkspaceManager.resolve``.
        """
        workspace, issued = self.workspaces.resolve(token)
        self.logger.debug("work dir: %s", workspace.root_dir)
        return RequestContext(workspace=workspace, request_id=request_id), issued

    def _check_remote_location(
        self,
        ctx: RequestContext,
        url: str,
        base: Path,
    ) -> None:
        """Refuse local remotes under the service root but outside the caller's workspace.

        Other workspaces, the lock directory and the identity config all
        live under the root; none of them may be cloned from or pushed to.
        """
        root = Path(self.settings.root_dir).resolve()
        own = ctx.workspace.root_dir.resolve()
        for path in local_paths(url, base):
            if _within(path, root) and not _within(path, own):
                ctx.logger.warning("refused remote outside workspace: %s", url)
                raise InvalidRequest(f"Remote outside workspace: {url}")

    def _require_work_tree(self, handle: Repository) -> None:
        result = self.executor.run(["rev-parse", "--is-bare-repository"], handle.dir)
        if result.text.strip() == "true":  # type: ignore[union-attr]
            raise InvalidRequest(f"Repository {handle.name} has no working tree")

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def list_repositories(self, ctx: RequestContext) -> list[str]:
        ctx.logger.info("list repositories")
        return self.resolver.list_names(ctx.workspace)

    def init(
        self,
        ctx: RequestContext,
        repo: str,
        bare: bool = False,
        shared: bool = False,
    ) -> str:
        """Create an empty repository.

        The directory is created with ``mkdir`` so two concurrent inits of
        the same name cannot both succeed.
        """
        validate_repo_name(repo)
        ctx.logger.info("init repo: %s", repo, extra={"bare": bare, "shared": shared})

        with self.resolver.reserve(ctx.workspace, repo) as path:
            try:
                path.mkdir()
            except FileExistsError:
                raise AlreadyExists(f"A repository {repo} already exists")
            except OSError as exc:
                raise FilesystemError(f"Cannot create {repo}: {exc.strerror or exc}")

            argv = ["init"]
            if bare:
                argv.append("--bare")
            if shared:
                argv.append("--shared")
            try:
                self.executor.run(argv, path)
            except GitRestError:
                shutil.rmtree(path, ignore_errors=True)
                raise
        return repo

    def clone(
        self,
        ctx: RequestContext,
        remote: str,
        repo: Optional[str] = None,
        bare: bool = False,
    ) -> str:
        ctx.logger.info("clone repo: %s", remote)
        address = parse_address(remote)
        repo = repo or address.short_project
        validate_repo_name(repo)
        self._check_remote_location(ctx, address.address, ctx.workspace.root_dir)

        with self.resolver.reserve(ctx.workspace, repo) as path:
            if path.exists():
                raise AlreadyExists(f"A repository {repo} already exists")
            argv = ["clone"]
            if bare:
                argv.append("--bare")
            argv += ["--", address.address, repo]
            self.executor.run(argv, ctx.workspace.root_dir)
        return repo

    def delete(self, ctx: RequestContext, repo: str) -> None:
        ctx.logger.info("delete repo: %s", repo)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            try:
                shutil.rmtree(handle.dir)
            except OSError as exc:
                raise FilesystemError(f"Cannot delete {repo}: {exc.strerror or exc}")
            self.resolver.locks.discard(ctx.workspace, repo)

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def config_get(self, ctx: RequestContext, repo: str, key: str) -> list[str]:
        """All values of a local config option; ``[]`` if it is unset."""
        validate_config_key(key)
        ctx.logger.info("config get %s", key)
        argv = ["config", "--local", "--get-all", key]
        with self.resolver.open(ctx.workspace, repo) as handle:
            result = self.executor.execute(argv, handle.dir)
        if result.exit_code == _CONFIG_KEY_MISSING and not result.stderr.strip():
            return []
        if not result.ok:
            raise classify_tool_failure(result.argv, result.exit_code, result.error_detail)
        return parse_config_values(result.text)

    def _config_write(self, ctx: RequestContext, repo: str, argv: list[str]) -> None:
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self.executor.run(argv, handle.dir)

    def config_add(self, ctx: RequestContext, repo: str, key: str, value: str) -> None:
        validate_config_key(key)
        ctx.logger.info("config add %s", key)
        self._config_write(ctx, repo, ["config", "--local", "--add", key, value])

    def config_replace(self, ctx: RequestContext, repo: str, key: str, value: str) -> None:
        validate_config_key(key)
        ctx.logger.info("config replace %s", key)
        self._config_write(ctx, repo, ["config", "--local", "--replace-all", key, value])

    def config_unset(
        self,
        ctx: RequestContext,
        repo: str,
        key: str,
        unset_all: bool = False,
    ) -> None:
        validate_config_key(key)
        ctx.logger.info("config unset %s", key, extra={"unset_all": unset_all})
        argv = ["config", "--local", "--unset-all" if unset_all else "--unset", key]
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            result = self.executor.execute(argv, handle.dir)
        if result.exit_code == _CONFIG_UNSET_MISSING:
            raise NotFound(f"No such config option: {key}")
        if not result.ok:
            raise classify_tool_failure(result.argv, result.exit_code, result.error_detail)

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def list_remotes(self, ctx: RequestContext, repo: str) -> list[RemoteInfo]:
        ctx.logger.info("list remotes")
        with self.resolver.open(ctx.workspace, repo) as handle:
            return self.executor.run(["remote", "-v"], handle.dir, _text(parse_remotes))

    def add_remote(self, ctx: RequestContext, repo: str, name: str, url: str) -> None:
        validate_remote_name(name)
        address = parse_address(url)
        ctx.logger.info("add remote %s %s", name, address.address)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self._check_remote_location(ctx, address.address, handle.dir)
            self.executor.run(["remote", "add", "--", name, address.address], handle.dir)

    def remove_remote(self, ctx: RequestContext, repo: str, name: str) -> None:
        validate_remote_name(name)
        ctx.logger.info("remove remote %s", name)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self.executor.run(["remote", "remove", "--", name], handle.dir)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def list_branches(self, ctx: RequestContext, repo: str) -> list[BranchInfo]:
        ctx.logger.info("list branches")
        argv = ["branch", "--list", f"--format={BRANCH_FORMAT}"]
        with self.resolver.open(ctx.workspace, repo) as handle:
            return self.executor.run(
                argv, handle.dir, lambda r: parse_branches(r.text, ctx.logger),
            )

    def create_branch(self, ctx: RequestContext, repo: str, branch: str) -> str:
        if not branch:
            raise InvalidRequest("No branch name is specified")
        validate_branch_name(branch)
        ctx.logger.info("create branch: %s", branch)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self.executor.run(["branch", branch], handle.dir)
        return branch

    def checkout(self, ctx: RequestContext, repo: str, branch: str) -> str:
        """Switch to an existing local branch."""
        if not branch:
            raise InvalidRequest("No branch name is specified")
        validate_branch_name(branch)
        ctx.logger.info("checkout branch: %s", branch)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            probe = self.executor.execute(
                ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], handle.dir,
            )
            if not probe.ok:
                raise NotFound(f"Unknown branch {branch}")
            self.executor.run(["checkout", branch, "--"], handle.dir)
        return branch

    # ------------------------------------------------------------------
    # Paths and history
    # ------------------------------------------------------------------

    def move(self, ctx: RequestContext, repo: str, source: str, destination: str) -> None:
        source = validate_pathspec(source)
        destination = validate_pathspec(destination)
        ctx.logger.info("move: %s -> %s", source, destination)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self.executor.run(["mv", "--", source, destination], handle.dir)

    def show(
        self,
        ctx: RequestContext,
        repo: str,
        path: str,
        rev: Optional[str] = None,
    ) -> bytes:
        """Raw content of *path* at *rev* (``HEAD`` by default)."""
        rev = validate_revision(rev or DEFAULT_REVISION)
        path = normalize_repo_path(path)
        ctx.logger.info("show %s:%s", rev, path)
        with self.resolver.open(ctx.workspace, repo) as handle:
            result = self.executor.run(["show", f"{rev}:{path}"], handle.dir)
        return result.stdout  # type: ignore[union-attr]

    def ls_tree(
        self,
        ctx: RequestContext,
        repo: str,
        path: str,
        rev: Optional[str] = None,
    ) -> list[TreeEntry]:
        """Committed tree rooted at *path* as of *rev*."""
        rev = validate_revision(rev or DEFAULT_REVISION)
        path = normalize_repo_path(path)
        ctx.logger.info("ls-tree %s %s", rev, path)
        argv = ["ls-tree", "-z", "-t", "-r", rev, "--"]
        if path:
            argv.append(path)
        with self.resolver.open(ctx.workspace, repo) as handle:
            text = self.executor.run(argv, handle.dir, _text(str))
        if not text:
            if not path:
                # The root tree of an empty commit.
                return []
            raise NotFound(f"No such file {path} in {rev}")
        return subtree_at(parse_ls_tree(text), path)

    def commit_info(self, ctx: RequestContext, repo: str, commit: str) -> CommitRecord:
        validate_commit_ref(commit)
        ctx.logger.info("get commit info: %s", commit)
        argv = ["show", *LOG_ARGS, f"{commit}^{{commit}}", "--"]
        with self.resolver.open(ctx.workspace, repo) as handle:
            return self.executor.run(argv, handle.dir, _text(parse_commit_show))

    def log(self, ctx: RequestContext, repo: str) -> list[CommitRecord]:
        """History of every ref, newest first."""
        ctx.logger.info("log")
        with self.resolver.open(ctx.workspace, repo) as handle:
            return self.executor.run(["log", "--all", *LOG_ARGS], handle.dir, _text(parse_log))

    def commit(
        self,
        ctx: RequestContext,
        repo: str,
        message: str,
        allow_empty: bool = False,
    ) -> CommitSummary:
        """Commit the index.

        Returns:
            The branch, full commit id and title of the new commit.
        """
        if not message:
            raise InvalidRequest("Empty commit message")
        ctx.logger.info("commit message: %s", message.split("\n", 1)[0])
        argv = ["commit", "-m", message]
        if allow_empty:
            argv.append("--allow-empty")
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            summary = self.executor.run(argv, handle.dir, _text(parse_commit_summary))
            head = self.executor.run(["rev-parse", "HEAD"], handle.dir)
        return CommitSummary(
            branch=summary.branch,
            sha1=head.text.strip(),  # type: ignore[union-attr]
            title=summary.title,
        )

    def push(
        self,
        ctx: RequestContext,
        repo: str,
        remote: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> None:
        remote = validate_remote_name(remote or DEFAULT_REMOTE)
        argv = ["push", remote]
        if branch:
            argv.append(validate_branch_name(branch))
        ctx.logger.info("push %s %s", remote, branch or "")
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            # Remote URLs can also arrive through config writes.
            urls = self.executor.run(
                ["remote", "get-url", "--push", "--all", remote],
                handle.dir,
                _text(parse_config_values),
            )
            for url in urls:
                self._check_remote_location(ctx, url, handle.dir)
            self.executor.run(argv, handle.dir)

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    def read_tree(self, ctx: RequestContext, repo: str, path: str) -> bytes | FsEntry:
        """A working-tree file's bytes, or a directory's recursive listing."""
        path = normalize_repo_path(path)
        ctx.logger.info("get file: %s", path)
        with self.resolver.open(ctx.workspace, repo) as handle:
            self._require_work_tree(handle)
            return read_path(handle.dir, path)

    def write_file(
        self,
        ctx: RequestContext,
        repo: str,
        path: str,
        source: BinaryIO,
    ) -> None:
        """Replace (or create) a working-tree file and stage it."""
        path = validate_pathspec(path)
        ctx.logger.info("put file: %s", path)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self._require_work_tree(handle)
            target = resolve_in_repo(handle.dir, path)
            try:
                st = target.lstat()
            except FileNotFoundError:
                st = None
            except OSError as exc:
                raise FilesystemError(f"Cannot stat {path}: {exc.strerror or exc}")
            if st is not None and not stat.S_ISREG(st.st_mode):
                raise InvalidRequest(f"Not a regular file: {path}")
            try:
                written = atomic_copy(source, target)
            except OSError as exc:
                raise FilesystemError(f"Cannot write {path}: {exc.strerror or exc}")
            ctx.logger.debug("wrote %d bytes to %s", written, path)
            self.executor.run(["add", "--", path], handle.dir)

    def delete_path(self, ctx: RequestContext, repo: str, path: str) -> None:
        path = validate_pathspec(path)
        ctx.logger.info("del file: %s", path)
        with self.resolver.open(ctx.workspace, repo, write=True) as handle:
            self._require_work_tree(handle)
            self.executor.run(["rm", "-r", "-f", "--", path], handle.dir)
