# Generated manually for the publication pipeline schema.

import uuid

import django.db.models.deletion
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="PlatformSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "review_mode",
                    models.CharField(
                        choices=[("auto", "Auto"), ("manual", "Manual")], default="manual", max_length=20
                    ),
                ),
                ("bypass_dns", models.BooleanField(default=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="platform_settings_updated",
                        to="auth.user",
                    ),
                ),
            ],
            options={"verbose_name_plural": "platform settings"},
        ),
        migrations.CreateModel(
            name="DomainVerification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("domain", models.CharField(max_length=253)),
                (
                    "method",
                    models.CharField(
                        choices=[("dns_txt", "DNS TXT record"), ("file", "File")], default="dns_txt", max_length=20
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("verified", "Verified"), ("failed", "Failed")],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("challenge_token", models.CharField(editable=False, max_length=128, unique=True)),
                (
                    "verified_via",
                    models.CharField(
                        blank=True,
                        choices=[("", "Not verified"), ("check", "Live check"), ("force", "Operator override")],
                        default="",
                        max_length=20,
                    ),
                ),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("last_checked_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="domain_verifications",
                        to="auth.user",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="App",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=120)),
                ("package_name", models.CharField(max_length=200)),
                ("website_url", models.URLField(max_length=500)),
                ("config_json", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("building", "Building"),
                            ("pending_review", "Pending review"),
                            ("published", "Published"),
                            ("rejected", "Rejected"),
                            ("unpublished", "Unpublished"),
                        ],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("package_artifact_ref", models.TextField(blank=True, default="")),
                ("package_size_bytes", models.PositiveBigIntegerField(blank=True, null=True)),
                ("package_sha256", models.CharField(blank=True, default="", max_length=64)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("published_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "domain_verification",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="apps",
                        to="solostore_pipeline.domainverification",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="apps", to="auth.user"
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="BuildJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("building", "Building"),
                            ("signing", "Signing"),
                            ("uploading", "Uploading"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="queued",
                        max_length=20,
                    ),
                ),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("logs", models.JSONField(blank=True, default=list)),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("", "None"),
                            ("build_failed", "Build failed"),
                            ("cancelled", "Cancelled"),
                            ("timeout", "Timed out"),
                        ],
                        default="",
                        max_length=30,
                    ),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("artifact_ref", models.TextField(blank=True, default="")),
                ("artifact_size_bytes", models.PositiveBigIntegerField(blank=True, null=True)),
                ("artifact_sha256", models.CharField(blank=True, default="", max_length=64)),
                ("revision", models.PositiveIntegerField(default=0)),
                ("dispatch_id", models.CharField(blank=True, default="", max_length=100)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "app",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="build_jobs",
                        to="solostore_pipeline.app",
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="build_jobs_requested",
                        to="auth.user",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.AddField(
            model_name="app",
            name="latest_build_job",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="solostore_pipeline.buildjob",
            ),
        ),
        migrations.CreateModel(
            name="DraftIndex",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("step", models.PositiveSmallIntegerField(default=0)),
                ("name", models.CharField(blank=True, default="", max_length=120)),
                ("domain", models.CharField(blank=True, default="", max_length=253)),
                ("has_icon", models.BooleanField(default=False)),
                ("has_feature_graphic", models.BooleanField(default=False)),
                ("screenshot_count", models.PositiveSmallIntegerField(default=0)),
                ("content_key", models.CharField(max_length=400)),
                ("content_sha256", models.CharField(max_length=64)),
                ("saved_at", models.DateTimeField()),
                (
                    "owner",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE, related_name="draft_index", to="auth.user"
                    ),
                ),
            ],
            options={"verbose_name_plural": "draft indexes"},
        ),
        migrations.CreateModel(
            name="PipelineEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "audience",
                    models.CharField(
                        choices=[("owner", "Owner"), ("operators", "Operators")], default="owner", max_length=20
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("build.status", "Build status"),
                            ("build.progress", "Build progress"),
                            ("app.status", "App status"),
                        ],
                        max_length=30,
                    ),
                ),
                ("subject_type", models.CharField(max_length=20)),
                ("subject_id", models.UUIDField()),
                ("sequence", models.PositiveIntegerField()),
                ("status", models.CharField(max_length=20)),
                ("progress", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("payload_json", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="pipeline_events", to="auth.user"
                    ),
                ),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.AddIndex(
            model_name="domainverification",
            index=models.Index(fields=["owner", "domain", "status"], name="domainverif_owner_domain_idx"),
        ),
        migrations.AddIndex(
            model_name="app",
            index=models.Index(fields=["owner", "status"], name="app_owner_status_idx"),
        ),
        migrations.AddIndex(
            model_name="app",
            index=models.Index(fields=["status", "updated_at"], name="app_status_updated_idx"),
        ),
        migrations.AddIndex(
            model_name="buildjob",
            index=models.Index(fields=["status", "created_at"], name="buildjob_status_created_idx"),
        ),
        migrations.AddConstraint(
            model_name="buildjob",
            constraint=models.UniqueConstraint(
                condition=Q(status__in=("queued", "building", "signing", "uploading")),
                fields=("app",),
                name="one_active_build_per_app",
            ),
        ),
        migrations.AddIndex(
            model_name="pipelineevent",
            index=models.Index(fields=["owner", "id"], name="event_owner_id_idx"),
        ),
        migrations.AddIndex(
            model_name="pipelineevent",
            index=models.Index(fields=["subject_type", "subject_id", "sequence"], name="event_subject_seq_idx"),
        ),
    ]
