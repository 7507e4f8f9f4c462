from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("solostore_pipeline", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="platformsettings",
            name="bypass_build",
            field=models.BooleanField(default=False),
        ),
        migrations.AddField(
            model_name="buildjob",
            name="bypassed",
            field=models.BooleanField(default=False),
        ),
        migrations.AddField(
            model_name="pipelineevent",
            name="read_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddIndex(
            model_name="pipelineevent",
            index=models.Index(fields=["owner", "audience", "read_at"], name="event_owner_unread_idx"),
        ),
    ]
