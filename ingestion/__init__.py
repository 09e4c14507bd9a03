"""
Ingestion pipeline for public-data sources.

Modules:
    base: Source adapter base class (HTTP client, retry, circuit breaker)
    runner: Import orchestrator (fetch, reconcile, prune, audit)
    queue: Single-worker job queue per source kind
    scheduler: APScheduler cron jobs feeding the queues

Subpackages:
    extractors: One adapter per source (WARN CSV, NWS, outages, recalls, scam RSS, remote jobs)
    transformers: Name normalization, dates, fingerprints, county registry
    loaders: Store implementations, entity resolution and per-source upserters

Usage:
    from ingestion.runner import ImportRunner
    from ingestion.extractors.weather_extractor import WeatherAlertExtractor

    runner = ImportRunner(store)
    result = await runner.run(WeatherAlertExtractor())
    print(f"{result.status.value}: {result.items_upserted} upserted")

Error Handling:
    All components raise the exceptions from core.exceptions. A fetch
    failure fails the whole run; a bad record only fails itself.
"""

__all__ = [
    "SourceAdapter",
    "ImportRunner",
    "IngestionQueue",
    "IngestionScheduler",
]
