import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .services.queue_key import QueueKey


class TokenStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    WAITING = "waiting", _("Waiting")
    SERVING = "serving", _("Serving")
    COMPLETED = "completed", _("Completed")
    SKIPPED_PENDING_REQUEUE = "skipped-pending-requeue", _("Skipped (re-queueing)")
    CANCELLED = "cancelled", _("Cancelled")


TERMINAL_STATUSES = (TokenStatus.COMPLETED, TokenStatus.CANCELLED)
SERVED_STATUSES = (TokenStatus.SERVING, TokenStatus.COMPLETED)


class Token(models.Model):
    """A citizen's service request at one office department on one date"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    token_number = models.CharField(_("Token Number"), max_length=24, unique=True)
    citizen_id = models.CharField(_("Citizen"), max_length=64, db_index=True)

    office_id = models.CharField(_("Office"), max_length=64)
    department_id = models.CharField(_("Department"), max_length=64)
    queue_key = models.CharField(_("Queue Key"), max_length=160, editable=False)

    office_name = models.CharField(_("Office Name"), max_length=200, blank=True)
    department_name = models.CharField(_("Department Name"), max_length=200, blank=True)
    service_name = models.CharField(_("Service Name"), max_length=200, blank=True)

    status = models.CharField(
        _("Status"),
        max_length=32,
        choices=TokenStatus.choices,
        default=TokenStatus.PENDING,
    )
    appointment_date = models.DateField(_("Appointment Date"))
    appointment_time = models.TimeField(_("Appointment Time"), null=True, blank=True)
    document_refs = models.JSONField(_("Document References"), default=dict, blank=True)

    # FIFO ordering key for waiting tokens; reset by check-in and skip
    created_at = models.DateTimeField(_("Queue Timestamp"), default=timezone.now)
    booked_at = models.DateTimeField(_("Booked At"), default=timezone.now, editable=False)
    called_at = models.DateTimeField(_("Called At"), null=True, blank=True)
    served_by = models.CharField(_("Served By"), max_length=64, null=True, blank=True)
    served_at = models.DateTimeField(_("Served At"), null=True, blank=True)
    updated_at = models.DateTimeField(_("Updated At"), auto_now=True)

    class Meta:
        verbose_name = _("Token")
        verbose_name_plural = _("Tokens")
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["queue_key", "status", "created_at"], name="token_key_status_created_idx"
            ),
            models.Index(
                fields=["office_id", "department_id", "status"], name="token_office_dept_status_idx"
            ),
            models.Index(fields=["appointment_date"], name="token_appointment_date_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["queue_key"],
                condition=Q(status="serving"),
                name="one_serving_token_per_queue_key",
            ),
        ]

    def __str__(self):
        return f"{self.token_number} ({self.status})"

    def save(self, *args, **kwargs):
        if not self.queue_key:
            self.queue_key = str(self.get_queue_key())
        super().save(*args, **kwargs)

    def get_queue_key(self):
        return QueueKey(self.office_id, self.department_id, self.appointment_date)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES


class OfficialAssignment(models.Model):
    """Office and department an official is allowed to operate on"""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="official_assignment",
        verbose_name=_("Official"),
    )
    office_id = models.CharField(_("Office"), max_length=64)
    department_id = models.CharField(_("Department"), max_length=64)
    is_active = models.BooleanField(_("Active"), default=True)
    created_at = models.DateTimeField(_("Created At"), auto_now_add=True)

    class Meta:
        verbose_name = _("Official Assignment")
        verbose_name_plural = _("Official Assignments")
        indexes = [
            models.Index(fields=["office_id", "department_id"], name="assignment_office_dept_idx")
        ]

    def __str__(self):
        return f"{self.user} @ {self.office_id}/{self.department_id}"
