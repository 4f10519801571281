"""Tests for in-process tree hashing."""

import hashlib

from prstack.git import TreeEntry, list_tree, tree_of
from prstack.stack.trees import apply_paths, hash_object, tree_hash
from prstack.tests.utils import commit_files, init_repo, make_git, run_cmd

EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def blob(sha_seed: str, mode: str = "100644") -> TreeEntry:
    return TreeEntry(mode=mode, type="blob", sha=hashlib.sha1(sha_seed.encode()).hexdigest())


class TestHashing:
    def test_empty_tree(self) -> None:
        assert tree_hash({}) == EMPTY_TREE

    def test_blob_hash_matches_git(self) -> None:
        # `echo hello | git hash-object --stdin`
        assert hash_object("blob", b"hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"

    def test_matches_git_for_nested_tree(self, tmp_path) -> None:
        repo = init_repo(str(tmp_path / "repo"))
        commit_files(repo, {
            "a.txt": "a\n",
            "a-b.txt": "dash sorts before slash\n",
            "a/inner.txt": "inner\n",
            "lib/deep/x.py": "x = 1\n",
            "lib/y.py": "y = 2\n",
        }, "initial")
        run_cmd("chmod +x lib/y.py && git add lib/y.py && git commit -q -m exec", cwd=repo)
        git_cmd = make_git(repo)
        assert tree_hash(list_tree(git_cmd, "HEAD")) == tree_of(git_cmd, "HEAD")


class TestApplyPaths:
    def test_modify_add_delete(self) -> None:
        current = {"a.txt": blob("a1"), "b.txt": blob("b1")}
        target = {"a.txt": blob("a2"), "c.txt": blob("c1")}
        result = apply_paths(current, target, ["a.txt", "b.txt", "c.txt"])
        assert result == {"a.txt": blob("a2"), "c.txt": blob("c1")}

    def test_untouched_paths_keep_current_state(self) -> None:
        current = {"a.txt": blob("a1"), "b.txt": blob("b1")}
        target = {"a.txt": blob("a2"), "b.txt": blob("b2")}
        assert apply_paths(current, target, ["a.txt"]) == {"a.txt": blob("a2"), "b.txt": blob("b1")}

    def test_file_replaced_by_directory(self) -> None:
        current = {"docs": blob("file")}
        target = {"docs/readme.md": blob("readme")}
        assert apply_paths(current, target, ["docs/readme.md"]) == {"docs/readme.md": blob("readme")}

    def test_directory_replaced_by_file(self) -> None:
        current = {"docs/a.md": blob("a"), "docs/b.md": blob("b"), "other": blob("o")}
        target = {"docs": blob("file"), "other": blob("o")}
        result = apply_paths(current, target, ["docs"])
        assert result == {"docs": blob("file"), "other": blob("o")}

    def test_prediction_matches_git_after_partial_apply(self, tmp_path) -> None:
        repo = init_repo(str(tmp_path / "repo"))
        base = commit_files(repo, {"keep.txt": "k\n", "mod.txt": "1\n", "gone.txt": "g\n"}, "base")
        head = commit_files(repo, {"mod.txt": "2\n", "gone.txt": None, "new/file.txt": "n\n"}, "head")
        git_cmd = make_git(repo)
        predicted = apply_paths(list_tree(git_cmd, base), list_tree(git_cmd, head),
                                ["gone.txt", "new/file.txt"])

        run_cmd(f"git checkout -q {base}", cwd=repo)
        commit_files(repo, {"gone.txt": None, "new/file.txt": "n\n"}, "partial")
        assert tree_hash(predicted) == tree_of(git_cmd, "HEAD")
