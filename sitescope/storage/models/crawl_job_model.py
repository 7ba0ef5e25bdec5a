from tortoise import fields, models


STATUS_PENDING = "pending"
STATUS_WAITING_VERIFICATION = "waiting_verification"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

POLLABLE_STATUSES = (STATUS_PENDING, STATUS_RUNNING)


class CrawlJob(models.Model):
    """
    One crawl of one site. Created by the API layer, mutated only by the processor.
    """
    id = fields.UUIDField(pk=True)
    url = fields.CharField(max_length=2048)
    max_pages = fields.IntField(default=100)
    email = fields.CharField(max_length=320, null=True)

    status = fields.CharField(
        max_length=32,
        default=STATUS_PENDING,
        index=True,  # pending / waiting_verification / running / completed / failed
    )
    can_continue = fields.BooleanField(default=True)

    take_screenshots = fields.BooleanField(default=False)
    crawl_sitemap = fields.BooleanField(default=True)
    sampled_crawl = fields.BooleanField(default=False)
    ignore_url_parameters = fields.BooleanField(default=False)
    require_email_verification = fields.BooleanField(default=False)

    pages_crawled = fields.IntField(default=0)
    pages_remaining = fields.IntField(null=True)
    total_unique_pages_found = fields.IntField(default=0)
    last_crawled_url = fields.CharField(max_length=2048, null=True)
    error_message = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)
    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)

    # robots.txt summary
    robots_txt_url = fields.CharField(max_length=2048, null=True)
    robots_txt_content = fields.TextField(null=True)
    robots_txt_status_code = fields.IntField(null=True)
    robots_txt_response_time = fields.IntField(null=True)
    robots_txt_fetched_at = fields.DatetimeField(null=True)
    robots_rules = fields.JSONField(null=True)
    robots_crawl_delay = fields.FloatField(null=True)

    sitemaps_discovered = fields.IntField(default=0)

    class Meta:
        table = "crawl_jobs"
        indexes = (("status", "can_continue", "created_at"),)

    def __str__(self):
        return f"{self.id} {self.url} [{self.status}]"
