from __future__ import annotations

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="TallyCardEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("company_id", models.UUIDField()),
                ("tally_card_number", models.CharField(max_length=64)),
                (
                    "reason_code",
                    models.CharField(
                        choices=[
                            ("UNSPECIFIED", "Unspecified"),
                            ("ADJUSTMENT", "Adjustment"),
                            ("FOUND", "Found"),
                            ("DAMAGED", "Damaged"),
                            ("LOST", "Lost"),
                            ("RECOUNT", "Recount"),
                            ("TRANSFER", "Transfer"),
                        ],
                        default="UNSPECIFIED",
                        max_length=32,
                    ),
                ),
                ("note", models.TextField(blank=True, null=True)),
                ("multi_location", models.BooleanField(default=False)),
                ("qty", models.IntegerField(blank=True, null=True)),
                ("location", models.TextField(blank=True, null=True)),
                ("hashdiff", models.CharField(editable=False, max_length=64)),
                (
                    "write_mode",
                    models.CharField(
                        choices=[("metadata", "metadata"), ("aggregate", "aggregate")],
                        max_length=16,
                    ),
                ),
                (
                    "supersedes",
                    models.ForeignKey(
                        blank=True,
                        help_text="Version this row was built on (lineage only; currency is decided by the pointer).",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="superseded_by",
                        to="tally.tallycardentry",
                    ),
                ),
                ("actor_id", models.UUIDField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(editable=False)),
            ],
            options={
                "db_table": "tally_card_entries",
                "indexes": [
                    models.Index(
                        fields=["company_id", "tally_card_number", "-updated_at", "-id"],
                        name="tally_entry_key_latest_idx",
                    ),
                    models.Index(fields=["company_id", "updated_at"], name="tally_entry_company_upd_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TallyCardEntryLocation",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("company_id", models.UUIDField()),
                ("location", models.CharField(max_length=128)),
                ("qty", models.IntegerField()),
                ("pos", models.PositiveIntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "entry",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="locations",
                        to="tally.tallycardentry",
                    ),
                ),
            ],
            options={
                "db_table": "tally_card_entry_locations",
                "ordering": ["entry", "pos"],
                "indexes": [
                    models.Index(fields=["company_id", "entry"], name="tally_loc_company_entry_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=["entry", "pos"], name="uq_tally_location_entry_pos"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TallyCardPointer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("company_id", models.UUIDField()),
                ("tally_card_number", models.CharField(max_length=64)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "entry",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="tally.tallycardentry",
                    ),
                ),
            ],
            options={
                "db_table": "tally_card_pointers",
                "constraints": [
                    models.UniqueConstraint(
                        fields=["company_id", "tally_card_number"],
                        name="uq_tally_pointer_company_card",
                    ),
                ],
            },
        ),
    ]
