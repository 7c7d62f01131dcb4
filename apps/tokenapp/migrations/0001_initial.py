import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Token",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "token_number",
                    models.CharField(max_length=24, unique=True, verbose_name="Token Number"),
                ),
                (
                    "citizen_id",
                    models.CharField(db_index=True, max_length=64, verbose_name="Citizen"),
                ),
                ("office_id", models.CharField(max_length=64, verbose_name="Office")),
                ("department_id", models.CharField(max_length=64, verbose_name="Department")),
                (
                    "queue_key",
                    models.CharField(editable=False, max_length=160, verbose_name="Queue Key"),
                ),
                (
                    "office_name",
                    models.CharField(blank=True, max_length=200, verbose_name="Office Name"),
                ),
                (
                    "department_name",
                    models.CharField(blank=True, max_length=200, verbose_name="Department Name"),
                ),
                (
                    "service_name",
                    models.CharField(blank=True, max_length=200, verbose_name="Service Name"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("waiting", "Waiting"),
                            ("serving", "Serving"),
                            ("completed", "Completed"),
                            ("skipped-pending-requeue", "Skipped (re-queueing)"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=32,
                        verbose_name="Status",
                    ),
                ),
                ("appointment_date", models.DateField(verbose_name="Appointment Date")),
                (
                    "appointment_time",
                    models.TimeField(blank=True, null=True, verbose_name="Appointment Time"),
                ),
                (
                    "document_refs",
                    models.JSONField(blank=True, default=dict, verbose_name="Document References"),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now, verbose_name="Queue Timestamp"
                    ),
                ),
                (
                    "booked_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now, editable=False, verbose_name="Booked At"
                    ),
                ),
                (
                    "called_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="Called At"),
                ),
                (
                    "served_by",
                    models.CharField(
                        blank=True, max_length=64, null=True, verbose_name="Served By"
                    ),
                ),
                (
                    "served_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="Served At"),
                ),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="Updated At")),
            ],
            options={
                "verbose_name": "Token",
                "verbose_name_plural": "Tokens",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["queue_key", "status", "created_at"],
                        name="token_key_status_created_idx",
                    ),
                    models.Index(
                        fields=["office_id", "department_id", "status"],
                        name="token_office_dept_status_idx",
                    ),
                    models.Index(
                        fields=["appointment_date"], name="token_appointment_date_idx"
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "serving")),
                        fields=("queue_key",),
                        name="one_serving_token_per_queue_key",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OfficialAssignment",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("office_id", models.CharField(max_length=64, verbose_name="Office")),
                ("department_id", models.CharField(max_length=64, verbose_name="Department")),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "created_at",
                    models.DateTimeField(auto_now_add=True, verbose_name="Created At"),
                ),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="official_assignment",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Official",
                    ),
                ),
            ],
            options={
                "verbose_name": "Official Assignment",
                "verbose_name_plural": "Official Assignments",
                "indexes": [
                    models.Index(
                        fields=["office_id", "department_id"],
                        name="assignment_office_dept_idx",
                    )
                ],
            },
        ),
    ]
