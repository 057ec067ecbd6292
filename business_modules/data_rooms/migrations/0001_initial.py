from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='TableItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('partition_key', models.CharField(help_text='Partition key (e.g. SLINK#<id>)', max_length=255)),
                ('sort_key', models.CharField(help_text='Sort key (e.g. META or ACCESS#<timestamp>#<uuid>)', max_length=255)),
                ('data', models.JSONField(blank=True, default=dict, help_text='Item attributes')),
                ('expires_at', models.DateTimeField(blank=True, db_index=True, help_text='When the item expires (from its ttl attribute)', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Table Item',
                'verbose_name_plural': 'Table Items',
            },
        ),
        migrations.AddConstraint(
            model_name='tableitem',
            constraint=models.UniqueConstraint(fields=('partition_key', 'sort_key'), name='data_rooms_tableitem_key'),
        ),
    ]
