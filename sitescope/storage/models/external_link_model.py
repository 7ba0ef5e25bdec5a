from tortoise import fields, models


class ExternalLink(models.Model):
    """
    Off-site link target, aggregated per job.
    """
    id = fields.IntField(pk=True)
    job = fields.ForeignKeyField(
        "models.CrawlJob",
        related_name="external_links",
        on_delete=fields.CASCADE,
    )
    address = fields.CharField(max_length=2048)
    status = fields.CharField(max_length=32, default="Not Checked")
    status_code = fields.IntField(null=True)
    inlinks = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "external_links"
        unique_together = (("job", "address"),)
