from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with marketplace role"""
    ROLE_REQUESTER = 'requester'
    ROLE_PROVIDER = 'provider'
    ROLE_OPERATOR = 'operator'

    ROLE_CHOICES = [
        (ROLE_REQUESTER, 'Requester'),
        (ROLE_PROVIDER, 'Provider'),
        (ROLE_OPERATOR, 'Operator'),
    ]

    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_REQUESTER)
    phone_number = models.CharField(max_length=15, blank=True)
    completed_bookings = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    @property
    def is_operator(self):
        return self.role == self.ROLE_OPERATOR or self.is_staff

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
