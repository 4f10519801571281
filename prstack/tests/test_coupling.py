"""Tests for deterministic coupling rules."""

from prstack.stack.coupling import apply_coupling_rules, source_candidates


class TestSourceCandidates:
    def test_js_test_file(self) -> None:
        assert source_candidates("src/ui/button.test.tsx") == ["src/ui/button.tsx"]

    def test_python_test_in_tests_dir(self) -> None:
        assert source_candidates("pkg/tests/test_api.py") == ["pkg/tests/api.py", "pkg/api.py"]

    def test_go_test(self) -> None:
        assert source_candidates("server/handler_test.go") == ["server/handler.go"]

    def test_plain_file_has_none(self) -> None:
        assert source_candidates("src/app.ts") == []


class TestCouplingRules:
    def test_lockfile_follows_manifest_to_earliest_group(self) -> None:
        ownership = {"package.json": "ui", "package-lock.json": "auth", "src/a.ts": "auth"}
        result = apply_coupling_rules(ownership, list(ownership), ["auth", "ui"])
        assert result.ownership["package.json"] == "auth"
        assert result.ownership["package-lock.json"] == "auth"
        assert [(m.path, m.from_group, m.to_group, m.rule) for m in result.forced_merges] == [
            ("package.json", "ui", "auth", "manifest")]
        assert result.structured_warnings[0].category == "coupling"
        assert result.structured_warnings[0].severity == "info"

    def test_manifests_in_different_directories_are_independent(self) -> None:
        ownership = {"a/package.json": "ui", "b/package-lock.json": "auth"}
        result = apply_coupling_rules(ownership, list(ownership), ["auth", "ui"])
        assert result.ownership == ownership
        assert result.forced_merges == []

    def test_tsconfig_set(self) -> None:
        ownership = {"tsconfig.json": "b", "tsconfig.build.json": "a"}
        result = apply_coupling_rules(ownership, list(ownership), ["a", "b"])
        assert set(result.ownership.values()) == {"a"}

    def test_test_follows_source(self) -> None:
        ownership = {"src/login.ts": "auth", "src/login.test.ts": "tests"}
        result = apply_coupling_rules(ownership, list(ownership), ["auth", "tests"])
        assert result.ownership["src/login.test.ts"] == "auth"
        assert result.forced_merges[0].rule == "test-pair"

    def test_test_without_changed_source_stays(self) -> None:
        ownership = {"src/login.test.ts": "tests"}
        result = apply_coupling_rules(ownership, list(ownership), ["tests"])
        assert result.forced_merges == []

    def test_rename_old_path_follows_new_path(self) -> None:
        ownership = {"old/name.py": "a", "new/name.py": "b"}
        result = apply_coupling_rules(ownership, list(ownership), ["a", "b"],
                                      renames=[("old/name.py", "new/name.py")])
        assert result.ownership["old/name.py"] == "b"
        assert result.forced_merges[0].rule == "rename"

    def test_input_is_not_mutated(self) -> None:
        ownership = {"package.json": "ui", "yarn.lock": "auth"}
        apply_coupling_rules(ownership, list(ownership), ["auth", "ui"])
        assert ownership == {"package.json": "ui", "yarn.lock": "auth"}
