from tortoise import fields, models


EDGE_INTERNAL = "internal"
EDGE_EXTERNAL = "external"


class Inlink(models.Model):
    """
    One anchor found on a crawled page. Never updated after creation,
    except for ``to_page`` which finalize resolves once the target is known.
    """
    id = fields.IntField(pk=True)
    job = fields.ForeignKeyField(
        "models.CrawlJob",
        related_name="inlinks",
        on_delete=fields.CASCADE,
    )
    type = fields.CharField(max_length=16, index=True)  # internal / external

    from_address = fields.CharField(max_length=2048)
    to_address = fields.CharField(max_length=2048, index=True)

    anchor_text = fields.TextField(null=True)
    alt_text = fields.TextField(null=True)
    follow = fields.BooleanField(default=True)
    target = fields.CharField(max_length=64, null=True)
    rel = fields.CharField(max_length=255, null=True)
    link_position = fields.IntField(null=True)
    link_origin = fields.CharField(max_length=32, default="html")

    from_page = fields.ForeignKeyField(
        "models.Page",
        related_name="outgoing_links",
        on_delete=fields.CASCADE,
    )
    to_page = fields.ForeignKeyField(
        "models.Page",
        related_name="incoming_links",
        null=True,
        on_delete=fields.SET_NULL,
    )
    to_external = fields.ForeignKeyField(
        "models.ExternalLink",
        related_name="incoming_links",
        null=True,
        on_delete=fields.CASCADE,
    )

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "inlinks"
