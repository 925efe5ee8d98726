import pytest

from gallerypro.rules.actions import (
    execute_action,
    execute_badge,
    execute_filter,
    execute_limit,
    execute_prioritize,
    execute_reorder,
    execute_replace,
    format_badge_text,
    interleave_items,
)
from gallerypro.rules.models import (
    BadgeAction,
    FilterAction,
    LimitAction,
    PrioritizeAction,
    ReorderAction,
    ReplaceAction,
    StaticMedia,
    UnknownAction,
    action_from_dict,
)


def ids(media):
    return [m.id for m in media]


def visible_ids(media):
    return [m.id for m in media if m.visible]


class TestFilter:

    @pytest.mark.unit
    def test_include_by_tag(self, processed_media, make_context):
        result = execute_filter(
            FilterAction(mode="include", match_type="media_tag", match_values=["lifestyle"]),
            processed_media, make_context()
        )
        assert visible_ids(result) == ["media_2"]
        assert len(result) == len(processed_media)

    @pytest.mark.unit
    def test_exclude_by_tag(self, processed_media, make_context):
        result = execute_filter(
            FilterAction(mode="exclude", match_type="media_tag", match_values=["video"]),
            processed_media, make_context()
        )
        assert visible_ids(result) == ["media_1", "media_2", "media_3", "media_4"]

    @pytest.mark.unit
    def test_exclude_does_not_reveal_hidden_items(self, processed_media, make_context):
        ctx = make_context()
        hidden = execute_filter(FilterAction(mode="include", match_type="universal"), processed_media, ctx)
        result = execute_filter(
            FilterAction(mode="exclude", match_type="media_tag", match_values=["video"]), hidden, ctx
        )
        assert visible_ids(result) == ["media_4"]

    @pytest.mark.unit
    def test_input_is_not_mutated(self, processed_media, make_context):
        execute_filter(
            FilterAction(mode="include", match_type="media_tag", match_values=["lifestyle"]),
            processed_media, make_context()
        )
        assert all(m.visible for m in processed_media)

    @pytest.mark.unit
    def test_variant_value_any(self, processed_media, make_context):
        result = execute_filter(
            FilterAction(mode="include", match_type="variant_value", match_values=["Blue"]),
            processed_media, make_context()
        )
        # unmapped items only follow the shopper's selection, and nothing is selected
        assert visible_ids(result) == ["media_2", "media_3"]

    @pytest.mark.unit
    def test_variant_value_follows_selection_when_no_values(self, processed_media, make_context):
        ctx = make_context(variant={"selectedOptions": {"Color": "Blue"}, "selectedValues": ["Blue"]})
        result = execute_filter(
            FilterAction(mode="include", match_type="variant_value", match_values=[]),
            processed_media, ctx
        )
        assert visible_ids(result) == ["media_2", "media_3", "media_4", "media_5"]

    @pytest.mark.unit
    def test_variant_value_all_mode_hides_unmapped(self, processed_media, make_context):
        ctx = make_context(variant={"selectedValues": ["Red", "Blue"]})
        result = execute_filter(
            FilterAction(mode="include", match_type="variant_value", match_values=["Red", "Blue"], match_mode="all"),
            processed_media, ctx
        )
        assert visible_ids(result) == ["media_2"]

    @pytest.mark.unit
    def test_media_type_position_and_universal(self, processed_media, make_context):
        ctx = make_context()
        videos = execute_filter(
            FilterAction(mode="include", match_type="media_type", media_types=["video"]), processed_media, ctx
        )
        assert visible_ids(videos) == ["media_5"]

        positions = execute_filter(
            FilterAction(mode="include", match_type="position", positions=[0, 2]), processed_media, ctx
        )
        assert visible_ids(positions) == ["media_1", "media_3"]

        universal = execute_filter(FilterAction(mode="include", match_type="universal"), processed_media, ctx)
        assert visible_ids(universal) == ["media_4", "media_5"]

    @pytest.mark.unit
    def test_alt_text(self, processed_media, make_context):
        result = execute_filter(
            FilterAction(mode="include", match_type="alt_text", match_values=["VIEW"]),
            processed_media, make_context()
        )
        assert visible_ids(result) == ["media_1", "media_3"]


class TestReorder:

    @pytest.mark.unit
    def test_move_to_front(self, processed_media, make_context):
        result = execute_reorder(
            ReorderAction(strategy="move_to_front", match_type="media_tag", match_values=["lifestyle"]),
            processed_media, make_context()
        )
        assert ids(result) == ["media_2", "media_1", "media_3", "media_4", "media_5"]
        assert [m.new_position for m in result] == [0, 1, 2, 3, 4]
        assert [m.position for m in result] == [1, 0, 2, 3, 4]

    @pytest.mark.unit
    def test_move_to_back(self, processed_media, make_context):
        result = execute_reorder(
            ReorderAction(strategy="move_to_back", match_type="media_tag", match_values=["product-shot"]),
            processed_media, make_context()
        )
        assert ids(result) == ["media_2", "media_4", "media_5", "media_1", "media_3"]

    @pytest.mark.unit
    def test_move_to_position(self, processed_media, make_context):
        result = execute_reorder(
            ReorderAction(strategy="move_to_position", match_type="media_type", match_values=["video"], position=1),
            processed_media, make_context()
        )
        assert ids(result) == ["media_1", "media_5", "media_2", "media_3", "media_4"]

    @pytest.mark.unit
    def test_move_without_criteria_keeps_order(self, processed_media, make_context):
        result = execute_reorder(ReorderAction(strategy="move_to_front"), processed_media, make_context())
        assert ids(result) == ids(processed_media)

    @pytest.mark.unit
    def test_reverse_keeps_hidden_items_last(self, processed_media, make_context):
        ctx = make_context()
        filtered = execute_filter(
            FilterAction(mode="exclude", match_type="position", positions=[0]), processed_media, ctx
        )
        result = execute_reorder(ReorderAction(strategy="reverse"), filtered, ctx)
        assert ids(result) == ["media_5", "media_4", "media_3", "media_2", "media_1"]
        assert result[-1].visible is False

    @pytest.mark.unit
    def test_sort_by_tag_order_is_stable(self, processed_media, make_context):
        result = execute_reorder(
            ReorderAction(strategy="sort_by_tag_order", tag_order=["video", "lifestyle"]),
            processed_media, make_context()
        )
        assert ids(result) == ["media_5", "media_2", "media_1", "media_3", "media_4"]

    @pytest.mark.unit
    def test_shuffle_is_a_permutation(self, processed_media, make_context):
        ctx = make_context()
        for _ in range(20):
            result = execute_reorder(ReorderAction(strategy="shuffle"), processed_media, ctx)
            assert sorted(ids(result)) == sorted(ids(processed_media))
            assert sorted(m.new_position for m in result) == [0, 1, 2, 3, 4]
            assert all(m.visible for m in result)


class TestBadge:

    @pytest.mark.unit
    def test_first_uses_style_colors(self, processed_media, make_context):
        result = execute_badge(
            BadgeAction(text="SALE", style="danger", target="first"), processed_media, make_context()
        )
        assert [len(m.badges) for m in result] == [1, 0, 0, 0, 0]
        badge = result[0].badges[0]
        assert badge.text == "SALE"
        assert badge.background_color == "#ef4444"
        assert badge.text_color == "#ffffff"

    @pytest.mark.unit
    def test_first_and_last_skip_hidden_items(self, processed_media, make_context):
        ctx = make_context()
        filtered = execute_filter(
            FilterAction(mode="exclude", match_type="position", positions=[0, 4]), processed_media, ctx
        )
        first = execute_badge(BadgeAction(text="NEW", target="first"), filtered, ctx)
        last = execute_badge(BadgeAction(text="NEW", target="last"), filtered, ctx)
        assert [m.id for m in first if m.badges] == ["media_2"]
        assert [m.id for m in last if m.badges] == ["media_4"]

    @pytest.mark.unit
    def test_matched_and_custom_colors(self, processed_media, make_context):
        result = execute_badge(
            BadgeAction(text="Watch", target="matched", match_type="media_type", match_values=["video"],
                        style="custom", background_color="#000000", text_color="#fafafa"),
            processed_media, make_context()
        )
        assert [m.id for m in result if m.badges] == ["media_5"]
        assert result[4].badges[0].background_color == "#000000"

    @pytest.mark.unit
    def test_positions_and_stacking(self, processed_media, make_context):
        ctx = make_context()
        once = execute_badge(BadgeAction(text="A", target="positions", target_positions=[1, 3]), processed_media, ctx)
        twice = execute_badge(BadgeAction(text="B", target="all"), once, ctx)
        assert [[b.text for b in m.badges] for m in twice] == [["B"], ["A", "B"], ["B"], ["A", "B"], ["B"]]

    @pytest.mark.unit
    def test_inventory_count_text(self, processed_media, make_context):
        ctx = make_context(inventory={"totalInventory": 3})
        result = execute_badge(
            BadgeAction(text="Only {{count}} left!", target="first", dynamic_values={"inventoryCount": True}),
            processed_media, ctx
        )
        assert result[0].badges[0].text == "Only 3 left!"
        assert format_badge_text("Only {{count}} left!") == "Only {{count}} left!"


class TestLimit:

    @pytest.mark.unit
    def test_keep_first_hides_the_rest(self, processed_media, make_context):
        result = execute_limit(LimitAction(max_images=2), processed_media, make_context())
        assert visible_ids(result) == ["media_1", "media_2"]
        assert ids(result) == ids(processed_media)

    @pytest.mark.unit
    def test_keep_last_and_even_distribution(self, processed_media, make_context):
        ctx = make_context()
        last = execute_limit(LimitAction(max_images=2, keep="last"), processed_media, ctx)
        assert visible_ids(last) == ["media_4", "media_5"]
        even = execute_limit(LimitAction(max_images=2, keep="even_distribution"), processed_media, ctx)
        assert visible_ids(even) == ["media_1", "media_3"]

    @pytest.mark.unit
    def test_keep_matched(self, processed_media, make_context):
        result = execute_limit(
            LimitAction(max_images=2, keep="matched", match_type="media_tag", match_values=["universal", "video"]),
            processed_media, make_context()
        )
        assert visible_ids(result) == ["media_4", "media_5"]

    @pytest.mark.unit
    def test_always_include_first(self, processed_media, make_context):
        result = execute_limit(
            LimitAction(max_images=2, keep="last", always_include_first=True), processed_media, make_context()
        )
        assert visible_ids(result) == ["media_1", "media_4"]

    @pytest.mark.unit
    def test_under_the_limit_is_unchanged(self, processed_media, make_context):
        result = execute_limit(LimitAction(max_images=10), processed_media, make_context())
        assert visible_ids(result) == ids(processed_media)


class TestPrioritize:

    @pytest.mark.unit
    def test_boost_to_front(self, processed_media, make_context):
        result = execute_prioritize(
            PrioritizeAction(match_type="media_tag", match_values=["product-shot"]), processed_media, make_context()
        )
        assert ids(result) == ["media_1", "media_3", "media_2", "media_4", "media_5"]
        assert [m.new_position for m in result] == [0, 1, 2, 3, 4]

    @pytest.mark.unit
    def test_boost_positions_moves_sequentially(self, processed_media, make_context):
        result = execute_prioritize(
            PrioritizeAction(strategy="boost_positions", match_type="media_tag",
                             match_values=["product-shot", "video"], boost_amount=1),
            processed_media, make_context()
        )
        # media_1 is already first; media_3 and media_5 each move up one slot
        assert ids(result) == ["media_1", "media_3", "media_2", "media_5", "media_4"]

    @pytest.mark.unit
    def test_interleave(self, processed_media, make_context):
        result = execute_prioritize(
            PrioritizeAction(strategy="interleave", match_type="media_tag", match_values=["lifestyle", "video"],
                             interleave_ratio={"prioritized": 1, "regular": 1}),
            processed_media, make_context()
        )
        assert ids(result) == ["media_2", "media_1", "media_5", "media_3", "media_4"]

    @pytest.mark.unit
    def test_interleave_zero_ratio_terminates(self, processed_media):
        result = interleave_items(processed_media[:2], processed_media[2:], {"prioritized": 0, "regular": 0})
        assert ids(result) == ids(processed_media)

    @pytest.mark.unit
    def test_variant_value_ignores_unmapped(self, processed_media, make_context):
        ctx = make_context(variant={"selectedValues": ["Blue"]})
        result = execute_prioritize(
            PrioritizeAction(match_type="variant_value", match_values=["Blue"]), processed_media, ctx
        )
        assert ids(result) == ["media_2", "media_3", "media_1", "media_4", "media_5"]


class TestReplace:

    @pytest.mark.unit
    def test_static_urls_replace(self, processed_media, make_context):
        action = ReplaceAction(static_urls=[StaticMedia(src="https://cdn/a.jpg", alt="A"),
                                            StaticMedia(src="https://cdn/b.jpg", position=1)])
        result = execute_replace(action, processed_media, make_context())
        assert ids(result) == ["static_0", "static_1"]
        assert all(m.visible for m in result)
        assert result[1].alt == ""

    @pytest.mark.unit
    def test_static_urls_append_with_cap(self, processed_media, make_context):
        action = ReplaceAction(static_urls=[StaticMedia(src="a"), StaticMedia(src="b")],
                               append_mode=True, max_images=1)
        result = execute_replace(action, processed_media, make_context())
        assert ids(result) == ids(processed_media) + ["static_5"]
        assert result[-1].new_position == 5

    @pytest.mark.unit
    def test_server_side_sources_pass_through(self, processed_media, make_context, caplog):
        action = ReplaceAction(source="metafield", metafield_namespace="gallery", metafield_key="alt")
        result = execute_replace(action, processed_media, make_context())
        assert ids(result) == ids(processed_media)
        assert "requires server-side data fetching" in caplog.text

    @pytest.mark.unit
    def test_empty_static_urls_pass_through(self, processed_media, make_context, caplog):
        result = execute_replace(ReplaceAction(static_urls=[]), processed_media, make_context())
        assert ids(result) == ids(processed_media)
        assert "no static URLs" in caplog.text
        assert "server-side" not in caplog.text


class TestDispatch:

    @pytest.mark.unit
    def test_unknown_action_passes_through(self, processed_media, make_context, caplog):
        action = action_from_dict({"type": "watermark", "opacity": 0.5})
        assert isinstance(action, UnknownAction)
        assert action.params == {"opacity": 0.5}
        result = execute_action(action, processed_media, make_context())
        assert ids(result) == ids(processed_media)
        assert "Unknown action type" in caplog.text

    @pytest.mark.unit
    def test_dispatch_from_camel_case(self, processed_media, make_context):
        action = action_from_dict({"type": "limit", "maxImages": 1, "keep": "last"})
        result = execute_action(action, processed_media, make_context())
        assert visible_ids(result) == ["media_5"]
