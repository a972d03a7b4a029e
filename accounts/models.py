from django.contrib.auth.models import AbstractUser
from django.db import models

from .managers import UserManager


class User(AbstractUser):
    username = None

    email = models.EmailField(unique=True)
    phone_number = models.CharField(max_length=20, blank=True, null=True)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    ROLE_CHOICES = (
        ("ADMIN", "Admin"),
        ("TENANT", "Tenant"),
    )

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="TENANT")

    objects = UserManager()

    @property
    def display_name(self):
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email

    @property
    def is_property_admin(self):
        return self.is_superuser or self.role == "ADMIN"

    def __str__(self):
        return self.email
