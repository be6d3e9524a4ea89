from django.test import TestCase

from voting.allocation import allocate
from voting.elections_services import grant_powers, set_election_status
from voting.exceptions import ElectionError, NotFound
from voting.models import Election, ParticipationRecord, PowerGrant
from voting.participation import participation_for
from voting.tests.utils_test_data import create_election, create_office, create_voter


class ElectionStatusTests(TestCase):
    def test_pending_to_active_to_finalized(self) -> None:
        election = create_election(status=Election.Status.pending)

        with self.assertLogs("voting.elections_services", level="INFO"):
            started = set_election_status(election_id=election.id, status=Election.Status.active, actor="admin")
        self.assertEqual(started.status, Election.Status.active)
        self.assertIsNotNone(started.started_at)
        self.assertIsNone(started.finished_at)

        finished = set_election_status(election_id=election.id, status="finalized")
        finished.refresh_from_db()
        self.assertEqual(finished.status, Election.Status.finalized)
        self.assertIsNotNone(finished.finished_at)

    def test_backwards_and_skipping_transitions_are_refused(self) -> None:
        cases = [
            (Election.Status.pending, Election.Status.finalized),
            (Election.Status.active, Election.Status.pending),
            (Election.Status.finalized, Election.Status.active),
            (Election.Status.active, Election.Status.active),
        ]
        for current, target in cases:
            with self.subTest(current=current, target=target):
                election = create_election(status=current)
                with self.assertRaises(ElectionError):
                    set_election_status(election_id=election.id, status=target)
                election.refresh_from_db()
                self.assertEqual(election.status, current)

    def test_unknown_status_and_missing_election(self) -> None:
        election = create_election(status=Election.Status.pending)

        with self.assertRaisesMessage(ElectionError, "unknown election status"):
            set_election_status(election_id=election.id, status="paused")
        with self.assertRaises(NotFound):
            set_election_status(election_id=999_999, status=Election.Status.active)


class GrantPowersTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.voter = create_voter(national_id="6001", full_name="Delegada", base_votes=1)

    def test_grant_raises_entitlement_and_records_history(self) -> None:
        voter = grant_powers(voter_id=self.voter.id, powers=2, reason=" poder notarial ", granted_by="secretaría")

        self.assertEqual(voter.powers, 2)
        self.assertEqual(voter.entitlement, 3)
        grant = PowerGrant.objects.get(voter=self.voter)
        self.assertEqual(grant.powers, 2)
        self.assertEqual(grant.reason, "poder notarial")
        self.assertEqual(grant.granted_by, "secretaría")

    def test_grants_accumulate(self) -> None:
        grant_powers(voter_id=self.voter.id, powers=1)
        voter = grant_powers(voter_id=self.voter.id, powers=2)

        self.assertEqual(voter.powers, 3)
        self.assertEqual(PowerGrant.objects.filter(voter=self.voter).count(), 2)

    def test_revocation_outside_an_active_election(self) -> None:
        create_election(status=Election.Status.finalized)
        grant_powers(voter_id=self.voter.id, powers=2)

        voter = grant_powers(voter_id=self.voter.id, powers=-1)

        self.assertEqual(voter.powers, 1)

    def test_revocation_is_refused_while_an_election_is_active(self) -> None:
        grant_powers(voter_id=self.voter.id, powers=2)
        create_election(status=Election.Status.active)

        with self.assertRaisesMessage(ElectionError, "while an election is active"):
            grant_powers(voter_id=self.voter.id, powers=-1)

        self.voter.refresh_from_db()
        self.assertEqual(self.voter.powers, 2)

    def test_revocation_is_refused_once_the_voter_has_voted(self) -> None:
        grant_powers(voter_id=self.voter.id, powers=2)
        election = create_election(status=Election.Status.active)
        office, (candidate,) = create_office(election=election, name="Presidencia", candidates=[("Ana", 1)])
        result = allocate(
            election_id=election.id,
            voter_id=self.voter.id,
            office_id=office.id,
            candidate_id=candidate.id,
            quantity=3,
        )
        self.assertTrue(result.ok)
        set_election_status(election_id=election.id, status=Election.Status.finalized)

        with self.assertRaisesMessage(ElectionError, "already voted"):
            grant_powers(voter_id=self.voter.id, powers=-1)

        self.voter.refresh_from_db()
        self.assertEqual(self.voter.powers, 2)
        self.assertEqual(ParticipationRecord.objects.get(voter=self.voter).votes_used, self.voter.entitlement)
        self.assertEqual(participation_for(election_id=election.id)[0].offices_completed, 1)

    def test_cannot_revoke_more_than_granted(self) -> None:
        grant_powers(voter_id=self.voter.id, powers=1)

        with self.assertRaisesMessage(ElectionError, "does not have that many powers"):
            grant_powers(voter_id=self.voter.id, powers=-2)

        self.voter.refresh_from_db()
        self.assertEqual(self.voter.powers, 1)
        self.assertEqual(PowerGrant.objects.filter(voter=self.voter).count(), 1)

    def test_invalid_amounts_and_unknown_voter(self) -> None:
        for powers in (0, True, 1.5):
            with self.subTest(powers=powers):
                with self.assertRaises(ElectionError):
                    grant_powers(voter_id=self.voter.id, powers=powers)  # type: ignore[arg-type]

        with self.assertRaises(NotFound):
            grant_powers(voter_id=999_999, powers=1)
        self.assertFalse(PowerGrant.objects.exists())
