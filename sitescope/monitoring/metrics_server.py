from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Job-Level Metrics
# -------------------------

JOBS_PROCESSED = Counter(
    "sitescope_jobs_processed_total",
    "Crawl jobs that reached a terminal status",
    ["status"],
)

JOB_DURATION = Histogram(
    "sitescope_job_duration_seconds",
    "Wall time spent processing one crawl job",
    buckets=(10, 30, 60, 120, 300, 600, 1200, 3600),
)

ACTIVE_JOB = Gauge(
    "sitescope_active_job",
    "1 while a crawl job is being processed",
)

# -------------------------
# Page Metrics
# -------------------------

CRAWLED_PAGES = Counter(
    "sitescope_crawled_pages_total",
    "Pages persisted as page records",
)

SKIPPED_PAGES = Counter(
    "sitescope_skipped_pages_total",
    "Fetched pages that were not persisted",
    ["reason"],
)

FAILED_PAGES = Counter(
    "sitescope_failed_pages_total",
    "Pages the render engine could not fetch",
    ["reason"],
)

FETCH_LATENCY = Histogram(
    "sitescope_fetch_latency_seconds",
    "Time to fetch or render a page",
    ["engine"],
)

# -------------------------
# Discovery Metrics
# -------------------------

ROBOTS_FETCHES = Counter(
    "sitescope_robots_fetches_total",
    "robots.txt fetch attempts",
    ["outcome"],
)

SITEMAP_FETCHES = Counter(
    "sitescope_sitemap_fetches_total",
    "Sitemap fetch attempts",
    ["outcome"],
)

# -------------------------
# Store Metrics
# -------------------------

STORE_RETRIES = Counter(
    "sitescope_store_retries_total",
    "Store operations retried after a failure",
    ["operation"],
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # محتوا فقط باید بدون charset باشد
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


async def start_metrics_server(port=8000):
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    return runner, site
