"""In-process registry of stacking runs."""

import concurrent.futures
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from ..config.models import PrstackConfig
from ..errors import (
    CompletenessVerificationError, CycleError, GitOperationError, RunCanceled,
    RunLimitExceeded, RunNotFound, ScopeVerificationError, StackError,
)
from ..git import diff_trees, resolve_commit
from ..github import GitHubClient
from ..stack.coupling import apply_coupling_rules, merge_coupling
from ..stack.execute import StackExecutor
from ..stack.feasibility import EDGE_IMPORT, EDGE_PATH_ORDER, build_dependency_edges, check_feasibility
from ..stack.history import extract_commit_deltas
from ..stack.imports import collect_file_imports
from ..stack.models import CleanupMode, CleanupResult, PRMeta, PublishPreview, PublishResult
from ..stack.partition import partition
from ..stack.plan import StackPlanner
from ..stack.publish import StackPublisher
from ..stack.titles import generate_pr_titles
from ..stack.verify import verify_stack
from ..typing import EventCallback, GitInterface, LLMClient
from .models import RunRecord, StackRequest
from .store import RunStore

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = ("done", "stack_error")
RESTART_ERROR = "Process restarted during stack pipeline"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunSession:
    """A run record plus its event buffer and live subscribers."""
    record: RunRecord
    request: Optional[StackRequest] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    subscribers: List[EventCallback] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)
    cancel_requested: threading.Event = field(default_factory=threading.Event)
    finished: threading.Event = field(default_factory=threading.Event)


class StackManager:
    """Runs stack pipelines on worker threads and owns their records.

    At most `tool.max_concurrent_runs` pipelines run at once; further starts
    are rejected. Each record is only written by the thread running it, and
    readers get deep copies.
    """

    def __init__(self, config: PrstackConfig, git_cmd: GitInterface, llm: LLMClient,
                 github: Optional[GitHubClient] = None, store: Optional[RunStore] = None):
        self.config = config
        self.git_cmd = git_cmd
        self.llm = llm
        self.github = github
        self.store = store
        self.max_runs = max(1, config.tool.max_concurrent_runs)
        self._sessions: Dict[str, RunSession] = {}
        self._lock = threading.Lock()
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_runs, thread_name_prefix="prstack-run")
        if store is not None:
            self._restore()

    def _restore(self) -> None:
        """Load persisted records; runs left running by a dead process become errors."""
        assert self.store is not None
        for record in self.store.load_all():
            if record.status == "running":
                record.status = "error"
                record.error = RESTART_ERROR
                record.finished_at = now_iso()
                self.store.save(record)
            session = RunSession(record=record)
            session.events.append(self._make_event(
                session, "done" if record.status == "done" else "stack_error",
                record.phase, record.error or record.status, include_state=True))
            session.finished.set()
            self._sessions[record.run_id] = session

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    # Run endpoints

    def start(self, request: StackRequest) -> str:
        """Start a run and return its id. Raises RunLimitExceeded when at capacity."""
        run_id = request.run_id or f"run-{uuid.uuid4().hex[:12]}"
        with self._lock:
            existing = self._sessions.get(run_id)
            if existing is not None and not existing.finished.is_set():
                return run_id
            active = sum(1 for s in self._sessions.values() if not s.finished.is_set())
            if active >= self.max_runs:
                raise RunLimitExceeded(f"{active} stack runs already in progress (limit {self.max_runs})")
            record = RunRecord(
                run_id=run_id,
                started_at=now_iso(),
                context={
                    "pr": request.pr.model_dump(mode="json"),
                    "base_sha": request.base_sha,
                    "head_sha": request.head_sha,
                    "source_ref": request.source_ref,
                    "groups": [g.model_dump(mode="json") for g in request.groups],
                },
            )
            session = RunSession(record=record, request=request)
            self._sessions[run_id] = session
        logger.info(f"Starting stack run {run_id} for PR #{request.pr.number}")
        self._pool.submit(self._run, session)
        return run_id

    def _session(self, run_id: str) -> RunSession:
        session = self._sessions.get(run_id)
        if session is None and self.store is not None:
            record = self.store.load(run_id)
            if record is not None:
                session = RunSession(record=record)
                session.finished.set()
                with self._lock:
                    session = self._sessions.setdefault(run_id, session)
        if session is None:
            raise RunNotFound(f"No stack run {run_id}")
        return session

    def status(self, run_id: str) -> RunRecord:
        """Snapshot of the run record."""
        session = self._session(run_id)
        with session.lock:
            return session.record.model_copy(deep=True)

    def list_runs(self) -> List[RunRecord]:
        return [self.status(run_id) for run_id in list(self._sessions)]

    def cancel(self, run_id: str) -> bool:
        """Ask a running pipeline to stop at its next phase boundary."""
        session = self._sessions.get(run_id)
        if session is None or session.finished.is_set():
            return False
        session.cancel_requested.set()
        logger.info(f"Cancel requested for {run_id}")
        return True

    def wait(self, run_id: str, timeout: Optional[float] = None) -> RunRecord:
        session = self._session(run_id)
        session.finished.wait(timeout)
        return self.status(run_id)

    def subscribe(self, run_id: str, callback: EventCallback) -> Callable[[], None]:
        """Replay buffered events to callback, then stream live ones.

        Returns a function that removes the subscription.
        """
        session = self._session(run_id)
        with session.lock:
            for event in session.events:
                callback(event)
            if not session.finished.is_set():
                session.subscribers.append(callback)

        def unsubscribe() -> None:
            with session.lock:
                if callback in session.subscribers:
                    session.subscribers.remove(callback)
        return unsubscribe

    def stream(self, run_id: str, timeout: Optional[float] = None) -> Iterator[Dict[str, Any]]:
        """Iterate over buffered then live events until the run ends."""
        events: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        unsubscribe = self.subscribe(run_id, events.put)
        try:
            while True:
                event = events.get(timeout=timeout)
                yield event
                if event["type"] in TERMINAL_EVENTS:
                    return
        finally:
            unsubscribe()

    # Events

    def _make_event(self, session: RunSession, event_type: str, phase: str, message: str,
                    current: Optional[int] = None, total: Optional[int] = None,
                    include_state: bool = False) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "id": len(session.events) + 1,
            "timestamp": int(time.time() * 1000),
            "type": event_type,
            "phase": phase,
            "message": message,
        }
        if current is not None:
            event["current"] = current
            event["total"] = total
        if include_state:
            event["state"] = session.record.to_json_dict()
        return event

    def _emit(self, session: RunSession, event_type: str, message: str,
              current: Optional[int] = None, total: Optional[int] = None,
              include_state: bool = False) -> None:
        with session.lock:
            event = self._make_event(session, event_type, session.record.phase, message,
                                     current, total, include_state)
            session.events.append(event)
            for callback in list(session.subscribers):
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Event subscriber failed, removing it: {e}")
                    session.subscribers.remove(callback)
            if event_type in TERMINAL_EVENTS:
                session.subscribers.clear()

    def _enter_phase(self, session: RunSession, phase: str, message: str) -> None:
        if session.cancel_requested.is_set():
            raise RunCanceled(f"Canceled before {phase}")
        with session.lock:
            session.record.phase = phase
        logger.info(f"[{session.record.run_id}] {phase}: {message}")
        self._emit(session, "progress", message, include_state=True)

    # Pipeline

    def _run(self, session: RunSession) -> None:
        record = session.record
        try:
            self._pipeline(session)
            with session.lock:
                record.status = "done"
                record.phase = "done"
        except RunCanceled as e:
            with session.lock:
                record.status = "canceled"
                record.error = str(e)
        except StackError as e:
            logger.error(f"[{record.run_id}] {record.phase} failed: {e}")
            with session.lock:
                record.status = "error"
                record.error = str(e)
        except Exception as e:
            logger.exception(f"[{record.run_id}] unexpected failure in {record.phase}")
            with session.lock:
                record.status = "error"
                record.error = f"Unexpected error: {e}"
        finally:
            with session.lock:
                record.finished_at = now_iso()
            self._persist(record)
            if record.status == "done":
                self._emit(session, "done", "Stack ready", include_state=True)
            else:
                self._emit(session, "stack_error", record.error or record.status, include_state=True)
            session.finished.set()

    def _persist(self, record: RunRecord) -> None:
        if self.store is None:
            return
        try:
            self.store.save(record)
        except OSError as e:
            logger.error(f"Failed to save run {record.run_id}: {e}")

    def _pipeline(self, session: RunSession) -> None:
        request = session.request
        assert request is not None
        record = session.record

        self._enter_phase(session, "partitioning", "Resolving file ownership")
        base_sha = resolve_commit(self.git_cmd, request.base_sha)
        head_sha = resolve_commit(self.git_cmd, request.head_sha)
        changes = diff_trees(self.git_cmd, base_sha, head_sha)
        changed = list(request.changed_files)
        for change in changes:
            changed.extend(change.paths)
        changed = list(dict.fromkeys(changed))
        deltas = extract_commit_deltas(self.git_cmd, base_sha, head_sha)
        context = request.context
        if not context.commit_messages and deltas:
            context = context.model_copy(update={"commit_messages": [d.subject for d in deltas]})
        result = partition(self.llm, request.groups, changed, request.file_summaries, context)
        coupling = apply_coupling_rules(
            result.ownership, changed, [g.id for g in request.groups],
            renames=[(c.old_path, c.new_path) for c in changes if c.status == "R"])
        result = merge_coupling(result, coupling)
        with session.lock:
            record.partition = result

        self._enter_phase(session, "feasibility", "Checking dependency order")
        kinds = self.config.tool.edge_kinds
        file_imports = collect_file_imports(self.git_cmd, head_sha, changed) if EDGE_IMPORT in kinds else None
        edges = build_dependency_edges(
            request.groups, result.ownership, result.reattributed, result.forced_merges,
            file_imports, kinds, commit_deltas=deltas if EDGE_PATH_ORDER in kinds else None)
        owning: Set[str] = set(result.ownership.values())
        feasibility = check_feasibility([g.id for g in request.groups if g.id in owning], edges)
        with session.lock:
            record.feasibility = feasibility
        if not feasibility.feasible:
            cycle = feasibility.cycle
            raise CycleError(cycle.group_cycle if cycle else [], cycle.edge_cycle if cycle else [])

        self._enter_phase(session, "planning", "Predicting stack trees")
        plan = StackPlanner(self.git_cmd).plan(
            base_sha, head_sha, feasibility, result.ownership, request.groups,
            shared_foundation=result.shared_foundation, source_ref=request.source_ref)
        if self.config.tool.generate_titles:
            self._emit(session, "progress", "Generating PR titles")
            titles, title_warnings = generate_pr_titles(self.llm, plan.groups, request.pr.title)
            for g in plan.groups:
                g.pr_title = titles.get(g.id, g.pr_title)
            plan.structured_warnings += title_warnings
        with session.lock:
            record.plan = plan

        self._enter_phase(session, "executing", f"Creating {len(plan.groups)} stack commits")

        def progress(current: int, total: int, branch: str) -> None:
            self._emit(session, "progress", f"Created {branch}", current, total)

        executor = StackExecutor(self.config, self.git_cmd)
        try:
            exec_result = executor.execute(
                plan, request.pr.number, author=request.author, source_ref=request.source_ref,
                run_id=record.run_id, on_progress=progress)
        except GitOperationError as e:
            with session.lock:
                record.exec_result = e.partial_result
            raise
        with session.lock:
            record.exec_result = exec_result

        self._enter_phase(session, "verifying", "Comparing stack trees")
        verify_result = verify_stack(self.git_cmd, plan, exec_result, result.ownership)
        with session.lock:
            record.verify_result = verify_result
        if not verify_result.verified:
            scope_errors = [w for w in verify_result.structured_warnings
                            if w.category == "verification.scope" and w.message in verify_result.errors]
            error_cls = ScopeVerificationError if scope_errors else CompletenessVerificationError
            raise error_cls(f"Stack verification failed: {'; '.join(verify_result.errors)}", verify_result.errors)

    # Publishing

    def _publisher(self) -> StackPublisher:
        return StackPublisher(self.config, self.git_cmd, self.github)

    def _finished_session(self, run_id: str) -> RunSession:
        session = self._session(run_id)
        if not session.finished.is_set():
            raise StackError(f"Run {run_id} is still running")
        if session.record.plan is None or session.record.exec_result is None:
            raise StackError(f"Run {run_id} has no executed stack")
        return session

    def publish_preview(self, run_id: str) -> PublishPreview:
        session = self._finished_session(run_id)
        record = session.record
        assert record.plan is not None and record.exec_result is not None
        preview = self._publisher().preview(record.plan, record.exec_result, self._pr_meta(record))
        with session.lock:
            record.publish_preview = preview
        self._persist(record)
        return preview

    def publish(self, run_id: str, force: bool = False) -> PublishResult:
        """Push the stack and open its PRs.

        A run that already has PRs is only published again with force, which
        opens a fresh set.
        """
        session = self._finished_session(run_id)
        record = session.record
        assert record.plan is not None and record.exec_result is not None
        if record.publish_result is not None and record.publish_result.prs and not force:
            numbers = ", ".join(f"#{pr.number}" for pr in record.publish_result.prs)
            raise StackError(f"Run {run_id} is already published ({numbers}); use force to publish again")
        result = self._publisher().publish(
            record.plan, record.exec_result, record.verify_result, self._pr_meta(record), force=force)
        with session.lock:
            record.publish_result = result
        self._persist(record)
        return result

    def publish_cleanup(self, run_id: str, mode: CleanupMode) -> CleanupResult:
        session = self._session(run_id)
        record = session.record
        if record.publish_result is None:
            raise StackError(f"Run {run_id} has not been published")
        cleanup = self._publisher().cleanup(record.publish_result, mode)
        with session.lock:
            record.publish_result.cleanup_result = cleanup
        self._persist(record)
        return cleanup

    def remove_local_branches(self, run_id: str) -> List[str]:
        """Delete the local branches a run created, including after a failed execute."""
        session = self._session(run_id)
        if not session.finished.is_set():
            raise StackError(f"Run {run_id} is still running")
        record = session.record
        if record.exec_result is None:
            raise StackError(f"Run {run_id} created no branches")
        removed = StackExecutor(self.config, self.git_cmd).remove_branches(record.exec_result)
        logger.info(f"Removed {len(removed)} local branches of {run_id}")
        return removed

    @staticmethod
    def _pr_meta(record: RunRecord) -> PRMeta:
        return PRMeta.model_validate(record.context.get("pr", {}))
