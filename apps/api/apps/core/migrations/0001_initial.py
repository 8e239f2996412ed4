from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='IdentifierSequence',
            fields=[
                ('name', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('last_value', models.PositiveBigIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Identifier Sequence',
                'verbose_name_plural': 'Identifier Sequences',
                'db_table': 'identifier_sequence',
            },
        ),
    ]
