"""Tests for prefix collapsing and pagination helpers."""

from localbucket.listing import (
    ContinuationTokens,
    collapse_common_prefixes,
    filter_after,
    filter_by_prefixes,
    paginate,
    url_encode_ignore_slashes,
)


class TestCollapseCommonPrefixes:
    """Tests for collapse_common_prefixes()."""

    def test_no_delimiter(self):
        """Without a delimiter nothing is collapsed."""
        assert collapse_common_prefixes(None, None, ["a/b", "c"]) == []

    def test_top_level(self):
        """Keys containing the delimiter collapse to their first segment."""
        keys = ["a", "b/1", "b/2", "c"]
        assert collapse_common_prefixes("", "/", keys) == ["b/"]

    def test_nested_prefix(self):
        """The search for the delimiter starts after the query prefix."""
        keys = ["photos/2023/a.jpg", "photos/2024/b.jpg", "photos/index.html"]
        assert collapse_common_prefixes("photos/", "/", keys) == ["photos/2023/", "photos/2024/"]

    def test_first_seen_order_without_duplicates(self):
        """Every prefix is reported once, in first-seen order."""
        keys = ["z/1", "a/1", "z/2"]
        assert collapse_common_prefixes("", "/", keys) == ["z/", "a/"]

    def test_multi_character_delimiter(self):
        """The delimiter is included in full."""
        assert collapse_common_prefixes("", "--", ["x--y", "x-y"]) == ["x--"]

    def test_keys_outside_prefix_ignored(self):
        """Keys not under the query prefix do not produce prefixes."""
        assert collapse_common_prefixes("p/", "/", ["q/1", "p/r/1"]) == ["p/r/"]


class TestFilters:
    """Tests for filter_by_prefixes() and filter_after()."""

    def test_filter_by_prefixes(self):
        """Keys under a collapsed prefix are removed."""
        assert filter_by_prefixes(["a", "b/1", "b/2", "c"], ["b/"]) == ["a", "c"]

    def test_filter_after(self):
        """Only keys strictly after the marker remain."""
        assert filter_after(["a", "b", "c"], "b") == ["c"]

    def test_filter_after_no_marker(self):
        """Without a marker every key remains."""
        assert filter_after(["a", "b"], None) == ["a", "b"]


class TestPaginate:
    """Tests for paginate()."""

    def test_truncates_leaves(self):
        """Only the first max_keys leaves are returned."""
        page = paginate(["a", "b", "c", "d", "e"], None, None, 2)
        assert page.items == ["a", "b"]
        assert page.is_truncated is True
        assert page.last == "b"

    def test_exact_fit_not_truncated(self):
        """A page holding every leaf is not truncated."""
        page = paginate(["a", "b"], None, None, 2)
        assert page.is_truncated is False

    def test_prefixes_do_not_count(self):
        """Common prefixes are reported but not counted toward max_keys."""
        page = paginate(["a", "b/1", "b/2", "c"], "", "/", 2)
        assert page.items == ["a", "c"]
        assert page.common_prefixes == ["b/"]
        assert page.is_truncated is False

    def test_zero_max_keys(self):
        """max_keys 0 yields an empty, untruncated page."""
        page = paginate(["a", "b"], None, "/", 0)
        assert page.items == []
        assert page.common_prefixes == []
        assert page.is_truncated is False
        assert page.last is None

    def test_key_function(self):
        """A key function extracts the key from richer items."""
        items = [{"k": "a"}, {"k": "b/1"}]
        page = paginate(items, None, "/", 10, key=lambda item: item["k"])
        assert page.items == [{"k": "a"}]
        assert page.common_prefixes == ["b/"]


class TestUrlEncoding:
    """Tests for url_encode_ignore_slashes()."""

    def test_slashes_kept(self):
        """Slashes are left alone while other characters are encoded."""
        assert url_encode_ignore_slashes("a b/c+d") == "a%20b/c%2Bd"

    def test_none(self):
        """None passes through."""
        assert url_encode_ignore_slashes(None) is None


class TestContinuationTokens:
    """Tests for ContinuationTokens."""

    def test_single_use(self):
        """A token resolves once and is then forgotten."""
        tokens = ContinuationTokens()
        token = tokens.issue("key-5")
        assert len(tokens) == 1
        assert tokens.consume(token) == "key-5"
        assert tokens.consume(token) is None
        assert len(tokens) == 0

    def test_unknown_token(self):
        """Unknown tokens resolve to None."""
        assert ContinuationTokens().consume("nope") is None
