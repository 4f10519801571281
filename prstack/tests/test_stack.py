"""Planner, executor and verifier against real repositories."""

from typing import Dict, List

import pytest

from prstack.config import default_config
from prstack.errors import CycleError, GitOperationError, PlanStaleError
from prstack.git import tree_of
from prstack.stack.execute import GROUP_TRAILER, StackExecutor, branch_name_for, commit_message_for
from prstack.stack.feasibility import build_dependency_edges, check_feasibility
from prstack.stack.imports import collect_file_imports
from prstack.stack.models import DependencyEdge, FeasibilityResult, Group, Plan, PlannedGroup
from prstack.stack.plan import StackPlanner
from prstack.stack.verify import verify_stack
from prstack.tests.utils import (
    FEATURE_GROUPS, build_feature_repo, commit_files, feature_ownership, make_git, run_cmd,
)


def feature_groups() -> List[Group]:
    return [Group.model_validate(g) for g in FEATURE_GROUPS]


def feasible_order(git_cmd, head: str, ownership: Dict[str, str]) -> FeasibilityResult:
    groups = feature_groups()
    imports = collect_file_imports(git_cmd, head, list(ownership))
    edges = build_dependency_edges(groups, ownership, file_imports=imports)
    return check_feasibility([g.id for g in groups], edges)


@pytest.fixture
def feature(tmp_path):
    repo, base, head = build_feature_repo(str(tmp_path / "repo"))
    git_cmd = make_git(repo)
    ownership = feature_ownership()
    return repo, git_cmd, base, head, ownership


class TestPlanner:
    def test_import_edges_order_groups(self, feature) -> None:
        _, git_cmd, _, head, ownership = feature
        result = feasible_order(git_cmd, head, ownership)
        assert result.feasible
        assert result.ordered_group_ids == ["Core", "API", "Docs"]
        assert [(e.from_, e.to, e.kind) for e in result.edges] == [("Core", "API", "import")]

    def test_plan_predicts_trees(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        plan = StackPlanner(git_cmd).plan(base, head, feasible_order(git_cmd, head, ownership),
                                          ownership, feature_groups())
        assert [g.id for g in plan.groups] == ["Core", "API", "Docs"]
        assert [g.order for g in plan.groups] == [0, 1, 2]
        assert plan.groups[1].deps == ["Core"]
        assert plan.groups[0].files == ["config", "config/settings.yaml", "src/core.py", "src/shared.py"]
        assert plan.expected_trees["Docs"] == tree_of(git_cmd, head)
        assert len(set(plan.expected_trees.values())) == 3
        core_stats = plan.groups[0].stats
        assert (core_stats.files_added, core_stats.files_deleted, core_stats.files_modified) == (2, 1, 1)

    def test_unowned_change_is_stale(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        del ownership["README.md"]
        with pytest.raises(PlanStaleError):
            StackPlanner(git_cmd).plan(base, head, feasible_order(git_cmd, head, ownership),
                                       ownership, feature_groups())

    def test_infeasible_raises_cycle(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        edges = [DependencyEdge(from_="Core", to="API", kind="import"),
                 DependencyEdge(from_="API", to="Core", kind="declared")]
        result = check_feasibility(["Core", "API", "Docs"], edges)
        with pytest.raises(CycleError) as exc_info:
            StackPlanner(git_cmd).plan(base, head, result, ownership, feature_groups())
        assert exc_info.value.group_cycle == ["API", "Core", "API"]

    def test_shared_foundation_pinned_first(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        plan = StackPlanner(git_cmd).plan(base, head, feasible_order(git_cmd, head, ownership),
                                          ownership, feature_groups(), shared_foundation="Docs")
        assert [g.id for g in plan.groups] == ["Docs", "Core", "API"]
        assert plan.expected_trees["API"] == tree_of(git_cmd, head)

    def test_shared_foundation_with_dependencies_not_moved(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        plan = StackPlanner(git_cmd).plan(base, head, feasible_order(git_cmd, head, ownership),
                                          ownership, feature_groups(), shared_foundation="API")
        assert [g.id for g in plan.groups] == ["Core", "API", "Docs"]
        assert any(w.title == "Shared foundation not pinned" for w in plan.structured_warnings)

    def test_empty_group_left_out(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        groups = feature_groups() + [Group(name="Unused")]
        result = check_feasibility([g.id for g in groups], [])
        plan = StackPlanner(git_cmd).plan(base, head, result, ownership, groups)
        assert "Unused" not in [g.id for g in plan.groups]
        assert any(w.title == "Empty group left out" for w in plan.structured_warnings)


class TestExecutor:
    def _plan(self, feature) -> Plan:
        _, git_cmd, base, head, ownership = feature
        return StackPlanner(git_cmd).plan(base, head, feasible_order(git_cmd, head, ownership),
                                          ownership, feature_groups())

    def test_builds_chain_matching_plan(self, feature) -> None:
        repo, git_cmd, base, head, ownership = feature
        plan = self._plan(feature)
        progress = []
        result = StackExecutor(default_config(), git_cmd).execute(
            plan, 42, source_ref="feature", on_progress=lambda c, t, b: progress.append((c, t, b)))

        assert result.verified
        assert result.final_tree_sha == tree_of(git_cmd, head)
        assert [c.branch_name for c in result.group_commits] == [
            "prstack/pr-42/1-core", "prstack/pr-42/2-api", "prstack/pr-42/3-docs"]
        assert result.source_copy_branch == "prstack/pr-42/source"
        assert [p[0] for p in progress] == [1, 2, 3]
        for commit in result.group_commits:
            assert commit.tree_sha == plan.expected_trees[commit.group_id]

        parents = [run_cmd(f"git rev-parse {c.commit_sha}^", cwd=repo) for c in result.group_commits]
        assert parents == [base] + [c.commit_sha for c in result.group_commits[:-1]]
        message = run_cmd(f"git log -1 --format=%B {result.group_commits[1].commit_sha}", cwd=repo)
        assert f"{GROUP_TRAILER}: API" in message
        assert run_cmd("git log -1 --format=%an prstack/pr-42/2-api", cwd=repo) == "Test User"

        # Caller's checkout is untouched
        assert run_cmd("git rev-parse --abbrev-ref HEAD", cwd=repo) == "main"
        assert run_cmd("git status --porcelain", cwd=repo) == ""

        verify = verify_stack(git_cmd, plan, result, ownership)
        assert verify.verified, verify.errors
        assert verify.warnings == []

    def test_moved_source_ref_is_stale(self, feature) -> None:
        repo, git_cmd, _, _, _ = feature
        plan = self._plan(feature)
        run_cmd("git checkout -q feature", cwd=repo)
        commit_files(repo, {"late.txt": "late\n"}, "late change")
        with pytest.raises(PlanStaleError):
            StackExecutor(default_config(), git_cmd).execute(plan, 1, source_ref="feature")

    def test_author_override(self, feature) -> None:
        repo, git_cmd, _, _, _ = feature
        result = StackExecutor(default_config(), git_cmd).execute(
            self._plan(feature), 7, author=("Stack Bot", "bot@example.com"))
        sha = result.group_commits[0].commit_sha
        assert run_cmd(f"git log -1 --format=%an,%ae {sha}", cwd=repo) == "Stack Bot,bot@example.com"

    def test_git_failure_keeps_partial_result(self, feature) -> None:
        _, git_cmd, _, _, _ = feature
        plan = self._plan(feature)
        plan.groups[1].files.append("not/in/diff.txt")
        with pytest.raises(GitOperationError) as exc_info:
            StackExecutor(default_config(), git_cmd).execute(plan, 3)
        partial = exc_info.value.partial_result
        assert [c.group_id for c in partial.group_commits] == ["Core"]

    def test_remove_branches(self, feature) -> None:
        repo, git_cmd, _, _, _ = feature
        executor = StackExecutor(default_config(), git_cmd)
        result = executor.execute(self._plan(feature), 9)
        removed = executor.remove_branches(result)
        assert len(removed) == 4
        assert run_cmd("git branch --list 'prstack/*'", cwd=repo) == ""


class TestVerifier:
    def test_tree_mismatch_is_scope_error(self, feature) -> None:
        _, git_cmd, base, head, ownership = feature
        plan = TestExecutor()._plan(feature)
        result = StackExecutor(default_config(), git_cmd).execute(plan, 5)
        plan.expected_trees["API"] = tree_of(git_cmd, base)
        verify = verify_stack(git_cmd, plan, result, ownership)
        assert not verify.verified
        assert any(w.category == "verification.scope" and w.message in verify.errors
                   for w in verify.structured_warnings)

    def test_final_tree_mismatch_is_completeness_error(self, feature) -> None:
        _, git_cmd, base, _, ownership = feature
        plan = TestExecutor()._plan(feature)
        result = StackExecutor(default_config(), git_cmd).execute(plan, 6)
        result.final_tree_sha = tree_of(git_cmd, base)
        verify = verify_stack(git_cmd, plan, result, ownership)
        assert not verify.verified
        assert [w.category for w in verify.structured_warnings if w.message in verify.errors] == [
            "verification.completeness"]

    def test_foreign_files_are_warnings(self, feature) -> None:
        _, git_cmd, _, _, ownership = feature
        plan = TestExecutor()._plan(feature)
        result = StackExecutor(default_config(), git_cmd).execute(plan, 8)
        ownership["README.md"] = "Core"
        verify = verify_stack(git_cmd, plan, result, ownership)
        assert verify.verified
        assert len(verify.warnings) == 1


def test_branch_name_and_message() -> None:
    group = PlannedGroup(id="g1", name="Auth & Login!", type="feat", description="Add login", order=0)
    assert branch_name_for("prstack", 12, group) == "prstack/pr-12/1-auth-login"
    assert commit_message_for(group).splitlines()[0] == "feat(auth-login): Add login"
