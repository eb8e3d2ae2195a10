from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("counts", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="ocrrerunjob",
            name="heartbeat_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
    ]
