# accounts/models.py
import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin, BaseUserManager
from django.utils import timezone


class UserRole(models.TextChoices):
    STARTUP = "STARTUP", "Startup"
    EXPERT = "EXPERT", "Expert"
    S2T = "S2T", "S2T staff"


# Roles that manage any conversation regardless of participant role
ADMIN_LIKE_ROLES = frozenset({UserRole.S2T})


class UserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra):
        if not email:
            raise ValueError("Email is required")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra):
        extra.setdefault("is_staff", True)
        extra.setdefault("is_superuser", True)
        extra.setdefault("role", UserRole.S2T)
        if extra.get("is_staff") is not True:
            raise ValueError("Superuser requires is_staff=True")
        if extra.get("is_superuser") is not True:
            raise ValueError("Superuser requires is_superuser=True")
        return self.create_user(email, password, **extra)


class User(AbstractBaseUser, PermissionsMixin):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, db_index=True)

    first_name = models.CharField(max_length=60, blank=True, default="")
    last_name = models.CharField(max_length=60, blank=True, default="")
    display_name = models.CharField(max_length=120, blank=True, default="")
    avatar = models.URLField(blank=True, default="")
    role = models.CharField(max_length=10, choices=UserRole.choices, default=UserRole.STARTUP, db_index=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)

    # chat/presence
    last_seen = models.DateTimeField(null=True, blank=True, db_index=True)
    status_message = models.CharField(max_length=140, blank=True, default="")

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS: list[str] = []

    objects = UserManager()

    class Meta:
        ordering = ["-date_joined"]

    def __str__(self):
        return self.get_display_name()

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin_like(self) -> bool:
        return self.is_staff or self.role in ADMIN_LIKE_ROLES

    def get_display_name(self) -> str:
        return self.display_name or self.full_name or self.email
