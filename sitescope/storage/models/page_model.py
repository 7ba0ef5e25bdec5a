from tortoise import fields, models


class Page(models.Model):
    """
    One crawled page of a job, keyed by its normalized address.
    Link counters and the score are written by the finalize pass only.
    """
    id = fields.IntField(pk=True)
    job = fields.ForeignKeyField(
        "models.CrawlJob",
        related_name="pages",
        on_delete=fields.CASCADE,
    )
    address = fields.CharField(max_length=2048)
    url_encoded_address = fields.TextField(null=True)

    content_type = fields.CharField(max_length=255, null=True)
    status_code = fields.IntField(null=True)
    status = fields.CharField(max_length=64, null=True)
    indexability = fields.CharField(max_length=32, null=True)
    indexability_status = fields.CharField(max_length=64, null=True)

    title = fields.TextField(null=True)
    meta_description = fields.TextField(null=True)
    meta_keywords = fields.TextField(null=True)
    meta_robots = fields.CharField(max_length=255, null=True)
    h1 = fields.TextField(null=True)
    canonical_link_element = fields.TextField(null=True)
    rel_next = fields.TextField(null=True)
    rel_prev = fields.TextField(null=True)
    amphtml_link_element = fields.TextField(null=True)
    mobile_alternate_link = fields.TextField(null=True)
    language = fields.CharField(max_length=32, null=True)

    size_bytes = fields.IntField(null=True)
    transferred_bytes = fields.IntField(null=True)
    co2_mg = fields.FloatField(null=True)
    carbon_rating = fields.CharField(max_length=4, null=True)
    response_time = fields.IntField(null=True)

    word_count = fields.IntField(null=True)
    sentence_count = fields.IntField(null=True)
    avg_words_per_sentence = fields.FloatField(null=True)
    flesch_reading_ease_score = fields.FloatField(null=True)
    readability = fields.CharField(max_length=32, null=True)
    text_ratio = fields.FloatField(null=True)

    crawl_depth = fields.IntField(default=0)
    folder_depth = fields.IntField(default=0)

    link_score = fields.FloatField(default=0)
    inlinks = fields.IntField(default=0)
    unique_inlinks = fields.IntField(default=0)
    outlinks = fields.IntField(default=0)
    unique_outlinks = fields.IntField(default=0)
    external_outlinks = fields.IntField(default=0)
    unique_external_outlinks = fields.IntField(default=0)
    percent_of_total = fields.FloatField(default=0)

    last_modified = fields.DatetimeField(null=True)
    http_version = fields.CharField(max_length=16, null=True)
    cookies = fields.TextField(null=True)

    html_content = fields.TextField(null=True)
    screenshot_url = fields.CharField(max_length=1024, null=True)
    crawl_timestamp = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "pages"
        unique_together = (("job", "address"),)

    def __str__(self):
        return f"{self.address} [{self.status_code}]"
