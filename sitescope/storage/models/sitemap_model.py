from tortoise import fields, models


class Sitemap(models.Model):
    """
    Fetched sitemap or sitemap index; ``parent`` links a child to the index
    that listed it.
    """
    id = fields.IntField(pk=True)
    job = fields.ForeignKeyField(
        "models.CrawlJob",
        related_name="sitemaps",
        on_delete=fields.CASCADE,
    )
    url = fields.CharField(max_length=2048)
    parent = fields.ForeignKeyField(
        "models.Sitemap",
        related_name="children",
        null=True,
        on_delete=fields.SET_NULL,
    )

    content = fields.TextField(null=True)
    status_code = fields.IntField(null=True)
    response_time = fields.IntField(null=True)
    url_count = fields.IntField(default=0)
    urls = fields.JSONField(null=True)
    last_mod = fields.DatetimeField(null=True)
    change_freq = fields.CharField(max_length=32, null=True)
    priority = fields.FloatField(null=True)
    discovered_from = fields.CharField(max_length=32, null=True)
    error = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "sitemaps"
        unique_together = (("job", "url"),)
