"""Property-based tests for merging.

For any current entries with distinct ids and any incoming entries:
- the current entries come first, unchanged
- every incoming entry is appended exactly once
- every id in the result is distinct
- an incoming title equal to a current title gets the suffix
"""

from hypothesis import given
from hypothesis import strategies as st

from wikiportable.merge import IdAllocator, MergeEngine


SUFFIX = " (imported)"

titles = st.sampled_from(["Home", "Notes", "Todo", "日記", ""])


@st.composite
def current_entries(draw):
    ids = draw(st.lists(st.integers(min_value=0, max_value=50), unique=True, max_size=10))
    return [{"id": i, "title": draw(titles)} for i in ids]


incoming_entries = st.lists(
    st.fixed_dictionaries(
        {"title": titles},
        optional={"id": st.one_of(
            st.integers(min_value=0, max_value=50),
            st.integers(min_value=0, max_value=50).map(float),
            st.text(max_size=3),
            st.none(),
        )},
    ),
    max_size=10,
)


def _engine() -> MergeEngine:
    return MergeEngine(
        store=None,
        backups=None,
        title_suffix=SUFFIX,
        allocator_factory=lambda taken: IdAllocator(taken, clock=lambda: 0.04),
    )


class TestMergeProperties:
    """Merge preserves, appends and keeps ids distinct."""

    @given(current=current_entries(), incoming=incoming_entries)
    def test_merge_invariants(self, current, incoming):
        result = _engine().merge_entries(current, incoming)

        assert result.merged[:len(current)] == current
        assert result.added_count == len(incoming)
        assert len(result.merged) == len(current) + len(incoming)

        ids = [e["id"] for e in result.merged]
        assert len(ids) == len(set(ids))

        current_titles = {e["title"] for e in current}
        for original, merged in zip(incoming, result.merged[len(current):]):
            if original["title"] in current_titles:
                assert merged["title"] == original["title"] + SUFFIX
            else:
                assert merged["title"] == original["title"]
