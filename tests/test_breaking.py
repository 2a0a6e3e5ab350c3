"""Tests for breaking-change detection."""

from reviewgraph.breaking import BreakingChangeDetector, is_visibility_reduced
from reviewgraph.indexer import CodebaseIndexer


class TestVisibilityOrder:
    """Test the visibility ordering."""

    def test_reductions(self):
        assert is_visibility_reduced("public", "private")
        assert is_visibility_reduced("protected", "package")
        assert not is_visibility_reduced("private", "public")
        assert not is_visibility_reduced("public", "public")


class TestDetectBreakingChanges:
    """Test signature, visibility and return-type checks."""

    def test_signature_change_with_callers_is_high(self, java_indexer: CodebaseIndexer, sym):
        new_foo = sym("foo", "Foo.java", start_line=5, signature="foo(int,int)", return_type="void")

        changes = BreakingChangeDetector(java_indexer).detect_breaking_changes([new_foo])

        assert len(changes) == 1
        change = changes[0]
        assert change.change_type == "signature"
        assert change.severity == "high"
        assert change.old_signature == "foo(int)"
        assert change.new_signature == "foo(int,int)"
        assert change.message == "Signature changed: foo(int) -> foo(int,int)"
        assert change.impacted_files == ["Bar.java", "Baz.java"]
        assert ("Bar.java", 10) in {(c.file, c.line) for c in change.call_sites}

    def test_visibility_reduction_without_callers_is_medium(self, sym):
        indexer = CodebaseIndexer()
        indexer.add_parsed("util.py", [sym("helper", "util.py", signature="helper()")], [])
        narrowed = sym("helper", "util.py", signature="helper()", visibility="private")

        changes = BreakingChangeDetector(indexer).detect_breaking_changes([narrowed])

        assert [c.change_type for c in changes] == ["visibility"]
        assert changes[0].severity == "medium"
        assert changes[0].call_sites == []
        assert changes[0].message == "Visibility reduced: public -> private"

    def test_each_check_emits_its_own_record(self, java_indexer: CodebaseIndexer, sym):
        new_foo = sym(
            "foo", "Foo.java", signature="foo(long)", return_type="int", visibility="protected",
        )
        changes = BreakingChangeDetector(java_indexer).detect_breaking_changes([new_foo])
        assert [c.change_type for c in changes] == ["signature", "visibility", "return_type"]
        assert all(c.severity == "high" for c in changes)

    def test_return_type_only(self, java_indexer: CodebaseIndexer, sym):
        new_foo = sym("foo", "Foo.java", signature="foo(int)", return_type="boolean")
        changes = BreakingChangeDetector(java_indexer).detect_breaking_changes([new_foo])
        assert [c.change_type for c in changes] == ["return_type"]
        assert changes[0].severity == "high"
        assert changes[0].message == "Return type changed: void -> boolean"

    def test_return_type_change_without_callers_is_high(self, sym):
        indexer = CodebaseIndexer()
        indexer.add_parsed("store.py", [sym("load", "store.py", signature="load()", return_type="int")], [])
        retyped = sym("load", "store.py", signature="load()", return_type="str")

        changes = BreakingChangeDetector(indexer).detect_breaking_changes([retyped])

        assert [(c.change_type, c.severity) for c in changes] == [("return_type", "high")]
        assert changes[0].call_sites == []

    def test_constructors_are_not_compared(self, sym):
        indexer = CodebaseIndexer()
        indexer.add_parsed("a.py", [sym("__init__", "a.py", kind="constructor", signature="__init__(x)")], [])
        indexer.add_parsed("b.py", [sym("__init__", "b.py", kind="constructor", signature="__init__(y, z)")], [])
        edited = sym("__init__", "a.py", kind="constructor", signature="__init__(x)")

        detector = BreakingChangeDetector(indexer)

        assert detector.detect_breaking_changes([edited]) == []
        assert detector.detect_removals({"b.py": []}) == []

    def test_missing_fields_are_not_compared(self, java_indexer: CodebaseIndexer, sym):
        new_foo = sym("foo", "Foo.java", signature=None, visibility=None)
        assert BreakingChangeDetector(java_indexer).detect_breaking_changes([new_foo]) == []

    def test_ignores_new_symbols_and_non_callables(self, java_indexer: CodebaseIndexer, sym):
        detector = BreakingChangeDetector(java_indexer)
        brand_new = sym("fresh", "Foo.java", signature="fresh(int)")
        as_class = sym("foo", "Foo.java", kind="class", visibility="private")
        assert detector.detect_breaking_changes([brand_new, as_class]) == []

    def test_detection_is_repeatable(self, java_indexer: CodebaseIndexer, sym):
        detector = BreakingChangeDetector(java_indexer)
        new_foo = sym("foo", "Foo.java", signature="foo(int,int)")
        first = detector.detect_breaking_changes([new_foo])
        second = detector.detect_breaking_changes([new_foo])
        assert [c.to_dict() for c in first] == [c.to_dict() for c in second]


class TestDetectRemovals:
    """Test removed-symbol detection."""

    def test_removed_method(self, java_indexer: CodebaseIndexer):
        changes = BreakingChangeDetector(java_indexer).detect_removals({"Foo.java": []})

        assert len(changes) == 1
        change = changes[0]
        assert change.change_type == "removed"
        assert change.symbol.name == "foo"
        assert change.new_signature is None
        assert change.severity == "high"
        assert change.message == "Method removed: foo(int)"

    def test_moved_symbol_is_not_removed(self, java_indexer: CodebaseIndexer, sym):
        moved = sym("foo", "Other.java", signature="foo(int)")
        changes = BreakingChangeDetector(java_indexer).detect_removals(
            {"Foo.java": [], "Other.java": [moved]},
        )
        assert changes == []

    def test_detect_combines_both(self, java_indexer: CodebaseIndexer, sym):
        new_bar = sym("bar", "Bar.java", start_line=8, signature="bar(String)")
        changes = BreakingChangeDetector(java_indexer).detect(
            [new_bar], {"Bar.java": [new_bar], "Foo.java": []},
        )
        assert [c.change_type for c in changes] == ["signature", "removed"]
        # Nobody calls bar
        assert changes[0].severity == "medium"
