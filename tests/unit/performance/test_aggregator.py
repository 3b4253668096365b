"""
Unit Tests for Channel Aggregation

Tests grouping by (channel, day), link-based channel resolution,
idempotent recomputation and skipped-event accounting.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from tests.contracts.performance.data_contract import REFERENCE_NOW


class TestAggregateGrouping:
    """Events roll up into one row per (channel, day)"""

    def test_clicks_and_conversions_grouped_by_channel(self, aggregator, factory):
        # Given
        channels = [
            factory.make_channel("ch_search", link_ids=["lnk_s"]),
            factory.make_channel("ch_social", link_ids=["lnk_o"]),
        ]
        events = (
            factory.make_clicks(3, link_id="lnk_s")
            + factory.make_clicks(2, link_id="lnk_o")
            + [factory.make_conversion(link_id="lnk_s", sale_amount=Decimal("40"))]
        )

        # When
        result = aggregator.aggregate(events, factory.make_window(), channels, campaign_id="cmp_default")

        # Then
        rows = {row.channel_id: row for row in result.aggregates}
        assert len(result.aggregates) == 2
        assert rows["ch_search"].clicks == 3
        assert rows["ch_search"].conversions == 1
        assert rows["ch_search"].revenue == Decimal("40")
        assert rows["ch_social"].clicks == 2
        assert rows["ch_social"].conversions == 0
        assert result.skipped == 0

    def test_separate_days_produce_separate_rows(self, aggregator, factory):
        # Given
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        today = REFERENCE_NOW - timedelta(hours=1)
        yesterday = REFERENCE_NOW - timedelta(days=1, hours=1)
        events = [
            factory.make_click(link_id="lnk_s", timestamp=today),
            factory.make_click(link_id="lnk_s", timestamp=yesterday),
        ]

        # When
        result = aggregator.aggregate(events, factory.make_window(days=3), channels)

        # Then
        assert [row.period_start.date() for row in result.aggregates] == [
            yesterday.date(),
            today.date(),
        ]
        assert all(row.clicks == 1 for row in result.aggregates)
        assert all(row.period_end - row.period_start == timedelta(days=1) for row in result.aggregates)

    def test_events_outside_window_are_ignored(self, aggregator, factory):
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        events = [
            factory.make_click(link_id="lnk_s"),
            factory.make_click(link_id="lnk_s", timestamp=REFERENCE_NOW - timedelta(days=5)),
            factory.make_click(link_id="lnk_s", timestamp=REFERENCE_NOW),  # end is exclusive
        ]

        result = aggregator.aggregate(events, factory.make_window(days=1), channels)

        assert sum(row.clicks for row in result.aggregates) == 1

    def test_conversion_falls_back_to_its_channel_id(self, aggregator, factory):
        # Given: conversion on an unmapped link but with a known channel id
        channels = [factory.make_channel("ch_email", link_ids=["lnk_e"])]
        conversion = factory.make_conversion(link_id="lnk_unmapped", channel_id="ch_email")

        # When
        result = aggregator.aggregate([conversion], factory.make_window(), channels)

        # Then
        assert result.skipped == 0
        assert result.aggregates[0].channel_id == "ch_email"
        assert result.aggregates[0].conversions == 1


class TestAggregateSpend:
    """Spend comes from channel spend records, not events"""

    def test_spend_added_to_matching_day(self, aggregator, factory):
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        events = factory.make_clicks(2, link_id="lnk_s")
        spend = [factory.make_spend("ch_search", Decimal("25.50"))]

        result = aggregator.aggregate(events, factory.make_window(), channels, spend)

        assert result.aggregates[0].spend == Decimal("25.50")
        assert result.aggregates[0].clicks == 2

    def test_spend_for_unknown_channel_is_warned_not_counted(self, aggregator, factory):
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        spend = [factory.make_spend("ch_missing", Decimal("10"))]

        result = aggregator.aggregate([], factory.make_window(), channels, spend)

        assert result.aggregates == []
        assert result.skipped == 0
        assert any("ch_missing" in w for w in result.warnings)


class TestAggregateIdempotence:
    """Recomputation over the same window is stable"""

    def test_aggregate_twice_yields_identical_rows(self, aggregator, factory):
        # Given
        channels = [
            factory.make_channel("ch_search", link_ids=["lnk_s"]),
            factory.make_channel("ch_social", link_ids=["lnk_o"]),
        ]
        events = factory.make_clicks(5, link_id="lnk_o") + factory.make_clicks(4, link_id="lnk_s")
        events.append(factory.make_conversion(link_id="lnk_o", sale_amount=Decimal("19.99")))
        spend = [factory.make_spend("ch_social", Decimal("12"))]
        window = factory.make_window()

        # When
        first = aggregator.aggregate(events, window, channels, spend)
        second = aggregator.aggregate(list(reversed(events)), window, channels, spend)

        # Then
        assert first.aggregates == second.aggregates
        assert first.model_dump() == second.model_dump()

    def test_redelivered_event_counted_once(self, aggregator, factory):
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        click = factory.make_click(link_id="lnk_s")

        result = aggregator.aggregate([click, click], factory.make_window(), channels)

        assert result.aggregates[0].clicks == 1


class TestAggregateSkipped:
    """Missing channel metadata skips the event, not the run"""

    def test_unmapped_events_are_skipped_with_warning(self, aggregator, factory):
        # Given
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        events = factory.make_clicks(2, link_id="lnk_s") + factory.make_clicks(3, link_id="lnk_orphan")

        # When
        result = aggregator.aggregate(events, factory.make_window(), channels)

        # Then
        assert result.skipped == 3
        assert len(result.warnings) == 3
        assert result.aggregates[0].clicks == 2

    def test_no_channels_skips_everything(self, aggregator, factory):
        events = factory.make_clicks(4, link_id="lnk_s")

        result = aggregator.aggregate(events, factory.make_window(), [], campaign_id="cmp_x")

        assert result.aggregates == []
        assert result.skipped == 4


class TestRollup:
    """Daily rows collapse into one row per channel"""

    def test_rollup_sums_days(self, aggregator, factory):
        channels = [factory.make_channel("ch_search", link_ids=["lnk_s"])]
        events = [
            factory.make_click(link_id="lnk_s", timestamp=REFERENCE_NOW - timedelta(hours=1)),
            factory.make_click(link_id="lnk_s", timestamp=REFERENCE_NOW - timedelta(days=1, hours=1)),
        ]
        window = factory.make_window(days=3)
        daily = aggregator.aggregate(events, window, channels).aggregates

        rolled = aggregator.rollup(daily, window)

        assert len(daily) == 2
        assert len(rolled) == 1
        assert rolled[0].clicks == 2
        assert rolled[0].period_start == window.start
