"""
Performance Service

Campaign performance and optimization microservice providing:
- Idempotent click and conversion ingestion
- Per-channel, per-day aggregation
- IP frequency fraud detection and bot traffic metrics
- Multi-model attribution
- ROI-ranked budget reallocation and pacing
- A/B test significance and winner selection
- Ranked insights per optimization cycle

Port: 8260
"""

__version__ = "1.0.0"
__service__ = "performance_service"
