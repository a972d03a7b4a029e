from django.db import models
from django.conf import settings

User = settings.AUTH_USER_MODEL


class Room(models.Model):
    room_number = models.CharField(max_length=20, unique=True)
    floor = models.PositiveSmallIntegerField(default=0)
    description = models.TextField(blank=True)
    tenant = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rooms',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['room_number']

    def __str__(self):
        return f"Room {self.room_number}"
