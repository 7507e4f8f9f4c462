import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class PlatformSettings(models.Model):
    REVIEW_MODE_CHOICES = [
        ("auto", "Auto"),
        ("manual", "Manual"),
    ]

    review_mode = models.CharField(max_length=20, choices=REVIEW_MODE_CHOICES, default="manual")
    bypass_dns = models.BooleanField(default=False)
    bypass_build = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.ForeignKey(
        "auth.User", null=True, blank=True, on_delete=models.SET_NULL, related_name="platform_settings_updated"
    )

    class Meta:
        verbose_name_plural = "platform settings"

    def __str__(self) -> str:
        return f"review={self.review_mode} bypass_dns={self.bypass_dns} bypass_build={self.bypass_build}"


class DomainVerification(models.Model):
    METHOD_CHOICES = [
        ("dns_txt", "DNS TXT record"),
        ("file", "File"),
    ]
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("verified", "Verified"),
        ("failed", "Failed"),
    ]
    VERIFIED_VIA_CHOICES = [
        ("", "Not verified"),
        ("check", "Live check"),
        ("force", "Operator override"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey("auth.User", on_delete=models.CASCADE, related_name="domain_verifications")
    domain = models.CharField(max_length=253)
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default="dns_txt")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    challenge_token = models.CharField(max_length=128, unique=True, editable=False)
    verified_via = models.CharField(max_length=20, choices=VERIFIED_VIA_CHOICES, blank=True, default="")
    verified_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["owner", "domain", "status"], name="domainverif_owner_domain_idx")]

    def __str__(self) -> str:
        return f"{self.domain} ({self.status})"

    @property
    def is_verified(self) -> bool:
        return self.status == "verified"


class App(models.Model):
    STATUS_CHOICES = [
        ("draft", "Draft"),
        ("building", "Building"),
        ("pending_review", "Pending review"),
        ("published", "Published"),
        ("rejected", "Rejected"),
        ("unpublished", "Unpublished"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey("auth.User", on_delete=models.CASCADE, related_name="apps")
    name = models.CharField(max_length=120)
    package_name = models.CharField(max_length=200)
    website_url = models.URLField(max_length=500)
    config_json = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="draft")
    domain_verification = models.ForeignKey(
        DomainVerification, null=True, blank=True, on_delete=models.SET_NULL, related_name="apps"
    )
    latest_build_job = models.ForeignKey(
        "BuildJob", null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    package_artifact_ref = models.TextField(blank=True, default="")
    package_size_bytes = models.PositiveBigIntegerField(null=True, blank=True)
    package_sha256 = models.CharField(max_length=64, blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")
    published_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["owner", "status"], name="app_owner_status_idx"),
            models.Index(fields=["status", "updated_at"], name="app_status_updated_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_owner_id = instance.__dict__.get("owner_id")
        return instance

    def save(self, *args, **kwargs):
        loaded_owner_id = getattr(self, "_loaded_owner_id", None)
        if loaded_owner_id is not None and loaded_owner_id != self.owner_id:
            raise ValidationError("app owner is immutable")
        super().save(*args, **kwargs)
        self._loaded_owner_id = self.owner_id


NON_TERMINAL_BUILD_STATUSES = ("queued", "building", "signing", "uploading")
TERMINAL_BUILD_STATUSES = ("completed", "failed")


class BuildJob(models.Model):
    STATUS_CHOICES = [
        ("queued", "Queued"),
        ("building", "Building"),
        ("signing", "Signing"),
        ("uploading", "Uploading"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]
    ERROR_CODE_CHOICES = [
        ("", "None"),
        ("build_failed", "Build failed"),
        ("cancelled", "Cancelled"),
        ("timeout", "Timed out"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    app = models.ForeignKey(App, on_delete=models.CASCADE, related_name="build_jobs")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="queued")
    progress = models.PositiveSmallIntegerField(default=0)
    logs = models.JSONField(default=list, blank=True)
    error_code = models.CharField(max_length=30, choices=ERROR_CODE_CHOICES, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    artifact_ref = models.TextField(blank=True, default="")
    artifact_size_bytes = models.PositiveBigIntegerField(null=True, blank=True)
    artifact_sha256 = models.CharField(max_length=64, blank=True, default="")
    revision = models.PositiveIntegerField(default=0)
    dispatch_id = models.CharField(max_length=100, blank=True, default="")
    bypassed = models.BooleanField(default=False)
    requested_by = models.ForeignKey(
        "auth.User", null=True, blank=True, on_delete=models.SET_NULL, related_name="build_jobs_requested"
    )
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["app"],
                condition=Q(status__in=NON_TERMINAL_BUILD_STATUSES),
                name="one_active_build_per_app",
            ),
        ]
        indexes = [models.Index(fields=["status", "created_at"], name="buildjob_status_created_idx")]

    def __str__(self) -> str:
        return f"{self.app_id}:{self.id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BUILD_STATUSES


class DraftIndex(models.Model):
    owner = models.OneToOneField("auth.User", on_delete=models.CASCADE, related_name="draft_index")
    step = models.PositiveSmallIntegerField(default=0)
    name = models.CharField(max_length=120, blank=True, default="")
    domain = models.CharField(max_length=253, blank=True, default="")
    has_icon = models.BooleanField(default=False)
    has_feature_graphic = models.BooleanField(default=False)
    screenshot_count = models.PositiveSmallIntegerField(default=0)
    content_key = models.CharField(max_length=400)
    content_sha256 = models.CharField(max_length=64)
    saved_at = models.DateTimeField()

    class Meta:
        verbose_name_plural = "draft indexes"

    def __str__(self) -> str:
        return f"draft:{self.owner_id} step {self.step}"


class PipelineEvent(models.Model):
    AUDIENCE_CHOICES = [
        ("owner", "Owner"),
        ("operators", "Operators"),
    ]
    KIND_CHOICES = [
        ("build.status", "Build status"),
        ("build.progress", "Build progress"),
        ("app.status", "App status"),
    ]

    owner = models.ForeignKey("auth.User", on_delete=models.CASCADE, related_name="pipeline_events")
    audience = models.CharField(max_length=20, choices=AUDIENCE_CHOICES, default="owner")
    kind = models.CharField(max_length=30, choices=KIND_CHOICES)
    subject_type = models.CharField(max_length=20)
    subject_id = models.UUIDField()
    sequence = models.PositiveIntegerField()
    status = models.CharField(max_length=20)
    progress = models.PositiveSmallIntegerField(null=True, blank=True)
    payload_json = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["owner", "id"], name="event_owner_id_idx"),
            models.Index(fields=["subject_type", "subject_id", "sequence"], name="event_subject_seq_idx"),
            models.Index(fields=["owner", "audience", "read_at"], name="event_owner_unread_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.kind}:{self.subject_id}#{self.sequence} ({self.status})"
