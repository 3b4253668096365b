"""
Channel Aggregator

Rolls raw click and conversion events into per-channel, per-day counters.
Aggregation is a full recomputation over the requested window, so running it
again after late events arrive simply produces the corrected rows.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    AggregationResult,
    ChannelAggregate,
    ClickEvent,
    ConversionEvent,
    SpendRecord,
    TimeRange,
    TrafficChannel,
)

logger = logging.getLogger(__name__)

Event = Union[ClickEvent, ConversionEvent]


def as_utc(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC"""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class _Counters:
    __slots__ = ("clicks", "conversions", "revenue", "spend")

    def __init__(self):
        self.clicks = 0
        self.conversions = 0
        self.revenue = Decimal("0")
        self.spend = Decimal("0")


class Aggregator:
    """Groups events by (channel_id, day)"""

    def aggregate(
        self,
        events: Iterable[Event],
        window: TimeRange,
        channels: List[TrafficChannel],
        spend_records: Optional[List[SpendRecord]] = None,
        campaign_id: Optional[str] = None,
    ) -> AggregationResult:
        """
        Aggregate events inside ``window`` into ChannelAggregate rows.

        Clicks are mapped to a channel through the channel's link ids;
        conversions are joined the same way by link id, falling back to the
        conversion's own channel id. Spend comes from the daily spend records.
        Events whose channel cannot be resolved are skipped with a warning.
        """
        start, end = as_utc(window.start), as_utc(window.end)
        link_to_channel: Dict[str, str] = {}
        known_channels = set()
        for channel in channels:
            known_channels.add(channel.channel_id)
            for link_id in channel.link_ids:
                link_to_channel[link_id] = channel.channel_id

        if campaign_id is None and channels:
            campaign_id = channels[0].campaign_id

        counters: Dict[Tuple[str, date], _Counters] = defaultdict(_Counters)
        warnings: List[str] = []
        skipped = 0
        seen = set()

        for event in events:
            ts = as_utc(event.timestamp)
            if not (start <= ts < end):
                continue

            if isinstance(event, ClickEvent):
                key = ("click", event.click_id)
                channel_id = link_to_channel.get(event.link_id)
            else:
                key = ("conversion", event.conversion_id)
                channel_id = link_to_channel.get(event.link_id)
                if channel_id is None and event.channel_id in known_channels:
                    channel_id = event.channel_id

            # Re-delivered events are counted once
            if key in seen:
                continue
            seen.add(key)

            if channel_id is None:
                skipped += 1
                message = f"{key[0]} {key[1]} on link {event.link_id} has no channel metadata; skipped"
                warnings.append(message)
                logger.warning(message)
                continue

            bucket = counters[(channel_id, ts.date())]
            if isinstance(event, ClickEvent):
                bucket.clicks += 1
            else:
                bucket.conversions += 1
                bucket.revenue += event.sale_amount

        last_day = (end - timedelta(microseconds=1)).date() if end > start else start.date()
        for record in spend_records or []:
            if not (start.date() <= record.spend_date <= last_day):
                continue
            if record.channel_id not in known_channels:
                message = f"spend for unknown channel {record.channel_id} on {record.spend_date}; ignored"
                warnings.append(message)
                logger.warning(message)
                continue
            counters[(record.channel_id, record.spend_date)].spend += record.amount

        aggregates = []
        for (channel_id, day), bucket in sorted(counters.items()):
            period_start, period_end = day_bounds(day)
            aggregates.append(
                ChannelAggregate(
                    channel_id=channel_id,
                    campaign_id=campaign_id or "",
                    period_start=period_start,
                    period_end=period_end,
                    clicks=bucket.clicks,
                    conversions=bucket.conversions,
                    revenue=bucket.revenue,
                    spend=bucket.spend,
                )
            )

        logger.debug(
            f"Aggregated {len(seen)} events into {len(aggregates)} rows "
            f"for campaign {campaign_id} ({skipped} skipped)"
        )

        return AggregationResult(
            campaign_id=campaign_id or "",
            window=TimeRange(start=start, end=end),
            aggregates=aggregates,
            skipped=skipped,
            warnings=warnings,
        )

    def rollup(
        self, aggregates: List[ChannelAggregate], window: TimeRange
    ) -> List[ChannelAggregate]:
        """Collapse daily rows into one row per channel covering the window"""
        totals: Dict[str, _Counters] = defaultdict(_Counters)
        campaigns: Dict[str, str] = {}
        for row in aggregates:
            bucket = totals[row.channel_id]
            bucket.clicks += row.clicks
            bucket.conversions += row.conversions
            bucket.revenue += row.revenue
            bucket.spend += row.spend
            campaigns[row.channel_id] = row.campaign_id

        return [
            ChannelAggregate(
                channel_id=channel_id,
                campaign_id=campaigns[channel_id],
                period_start=as_utc(window.start),
                period_end=as_utc(window.end),
                clicks=bucket.clicks,
                conversions=bucket.conversions,
                revenue=bucket.revenue,
                spend=bucket.spend,
            )
            for channel_id, bucket in sorted(totals.items())
        ]


__all__ = ["Aggregator", "as_utc", "day_bounds"]
