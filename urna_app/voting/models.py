import secrets

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone


def generate_public_link() -> str:
    return f"eleccion-{int(timezone.now().timestamp() * 1000)}-{secrets.token_hex(5)}"


class Voter(models.Model):
    """A registered voter as seen by the vote engine.

    Identity, credentials and profile editing live in the identity subsystem;
    the engine only reads `base_votes` and `powers`.
    """

    class Role(models.TextChoices):
        admin = "admin", "Admin"
        voter = "voter", "Voter"

    national_id = models.CharField(max_length=32, unique=True)
    full_name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.voter)
    base_votes = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    powers = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("full_name", "id")
        constraints = [
            models.CheckConstraint(condition=Q(base_votes__gte=1), name="voter_base_votes_gte_1"),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.national_id})"

    @property
    def entitlement(self) -> int:
        return int(self.base_votes) + int(self.powers)


class Election(models.Model):
    class Status(models.TextChoices):
        pending = "pending", "Pending"
        active = "active", "Active"
        finalized = "finalized", "Finalized"

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.pending)
    public_link = models.CharField(max_length=64, unique=True, default=generate_public_link)
    started_at = models.DateTimeField(blank=True, null=True)
    finished_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "id")

    def __str__(self) -> str:
        return self.name


class Office(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="offices")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("election", "id")

    def __str__(self) -> str:
        return f"{self.name} ({self.election_id})"


class Candidate(models.Model):
    office = models.ForeignKey(Office, on_delete=models.CASCADE, related_name="candidates")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    list_number = models.PositiveIntegerField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("office", "list_number", "name", "id")

    def __str__(self) -> str:
        return f"{self.name} ({self.office_id})"


class ParticipationRecord(models.Model):
    """Who has spent how many votes on which office.

    Deliberately has no candidate column: this table must never be able to
    answer "who voted for whom".
    """

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="participation_records")
    voter = models.ForeignKey(Voter, on_delete=models.PROTECT, related_name="participation_records")
    office = models.ForeignKey(Office, on_delete=models.CASCADE, related_name="participation_records")
    votes_used = models.PositiveIntegerField(default=0)

    first_voted_at = models.DateTimeField(auto_now_add=True)
    last_voted_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["election", "voter", "office"],
                name="uniq_participation_election_voter_office",
            ),
        ]
        indexes = [
            models.Index(fields=["election", "voter"], name="participation_el_voter"),
        ]

    def __str__(self) -> str:
        return f"{self.election_id}:{self.voter_id}:{self.office_id}={self.votes_used}"


class TallyEntry(models.Model):
    """One anonymous, append-only tally increment.

    Intentionally no voter reference and no timestamp, so rows cannot be joined
    or time-correlated with participation records.
    """

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="tally_entries")
    office = models.ForeignKey(Office, on_delete=models.CASCADE, related_name="tally_entries")
    candidate = models.ForeignKey(Candidate, on_delete=models.PROTECT, related_name="tally_entries")
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])

    class Meta:
        verbose_name_plural = "Tally entries"
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gte=1), name="tally_quantity_gte_1"),
        ]
        indexes = [
            models.Index(fields=["election", "office"], name="tally_el_office"),
        ]

    def __str__(self) -> str:
        return f"tally:{self.election_id}:{self.office_id}:{self.candidate_id}+{self.quantity}"


class PowerGrant(models.Model):
    """Audit trail of delegated powers granted to (or revoked from) a voter."""

    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="power_grants")
    powers = models.IntegerField()
    reason = models.TextField(blank=True, default="")
    granted_by = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")

    def __str__(self) -> str:
        return f"{self.voter_id}:{self.powers:+d}"
