from rest_framework import serializers

from .models import App, BuildJob, DomainVerification


class BuildJobSerializer(serializers.ModelSerializer):
    terminal = serializers.SerializerMethodField()

    class Meta:
        model = BuildJob
        fields = [
            "id",
            "app",
            "status",
            "progress",
            "logs",
            "error_code",
            "error_message",
            "artifact_ref",
            "artifact_size_bytes",
            "artifact_sha256",
            "revision",
            "bypassed",
            "terminal",
            "started_at",
            "finished_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_terminal(self, obj):
        return obj.is_terminal


class DomainVerificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = DomainVerification
        fields = [
            "id",
            "domain",
            "method",
            "status",
            "verified_via",
            "verified_at",
            "last_checked_at",
            "last_error",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AppSerializer(serializers.ModelSerializer):
    domain_verified = serializers.SerializerMethodField()
    build_count = serializers.SerializerMethodField()

    class Meta:
        model = App
        fields = [
            "id",
            "name",
            "package_name",
            "website_url",
            "config_json",
            "status",
            "domain_verification",
            "domain_verified",
            "latest_build_job",
            "build_count",
            "package_artifact_ref",
            "package_size_bytes",
            "package_sha256",
            "rejection_reason",
            "published_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_domain_verified(self, obj):
        return bool(obj.domain_verification and obj.domain_verification.is_verified)

    def get_build_count(self, obj):
        return obj.build_jobs.count()
