import json
from unittest.mock import patch

from django.db import DatabaseError, OperationalError
from django.test import TestCase, override_settings
from django.urls import reverse

from voting.models import Election, ParticipationRecord, TallyEntry, Voter
from voting.storage import DjangoVoteStore
from voting.tests.utils_test_data import create_election, create_office, create_voter


class _SessionMixin:
    def _login(self, voter: Voter) -> None:
        session = self.client.session
        session["_voter_id"] = voter.id
        session.save()


class VoteSubmitViewTests(_SessionMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.election = create_election()
        self.office, (self.ana, self.beto) = create_office(
            election=self.election,
            name="Presidencia",
            candidates=[("Ana", 1), ("Beto", 2)],
        )
        self.voter = create_voter(national_id="7001", full_name="Votante", base_votes=1, powers=1)
        self.url = reverse("election-vote-submit", args=[self.election.id, self.office.id])

    def _post_json(self, payload: object):
        return self.client.post(self.url, data=json.dumps(payload), content_type="application/json")

    def test_requires_a_session_voter(self) -> None:
        resp = self._post_json({"candidate_id": self.ana.id, "quantity": 1})

        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["error"], "authentication_required")
        self.assertFalse(TallyEntry.objects.exists())

    def test_get_is_not_allowed(self) -> None:
        self._login(self.voter)

        self.assertEqual(self.client.get(self.url).status_code, 405)

    def test_json_submission_records_the_vote(self) -> None:
        self._login(self.voter)

        resp = self._post_json({"candidate_id": self.ana.id, "quantity": 1})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.json(),
            {
                "ok": True,
                "error": None,
                "message": "Vote recorded",
                "remaining": 1,
                "votes_used": 1,
                "entitlement": 2,
                "retryable": False,
            },
        )
        self.assertEqual(TallyEntry.objects.get().candidate_id, self.ana.id)

    def test_form_submission_accepts_string_quantities(self) -> None:
        self._login(self.voter)

        resp = self.client.post(self.url, data={"candidate_id": str(self.beto.id), "quantity": " 2 "})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["remaining"], 0)

    def test_insufficient_votes_returns_remaining(self) -> None:
        self._login(self.voter)
        self._post_json({"candidate_id": self.ana.id, "quantity": 2})

        resp = self._post_json({"candidate_id": self.beto.id, "quantity": 1})

        self.assertEqual(resp.status_code, 400)
        data = resp.json()
        self.assertFalse(data["ok"])
        self.assertEqual(data["error"], "insufficient_votes")
        self.assertEqual(data["remaining"], 0)
        self.assertFalse(data["retryable"])

    def test_bad_quantities_are_invalid_quantity(self) -> None:
        self._login(self.voter)

        for quantity in ("abc", 0, -3, 1.5, True, None):
            with self.subTest(quantity=quantity):
                resp = self._post_json({"candidate_id": self.ana.id, "quantity": quantity})
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.json()["error"], "invalid_quantity")

        self.assertFalse(ParticipationRecord.objects.exists())

    def test_missing_or_malformed_candidate_is_invalid_target(self) -> None:
        self._login(self.voter)

        for payload in ({"quantity": 1}, {"candidate_id": "x", "quantity": 1}, {"candidate_id": True, "quantity": 1}):
            with self.subTest(payload=payload):
                resp = self._post_json(payload)
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.json()["error"], "invalid_target")

        resp = self.client.post(self.url, data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        resp = self._post_json([1, 2])
        self.assertEqual(resp.status_code, 400)

    def test_closed_election_is_conflict_status(self) -> None:
        self._login(self.voter)
        Election.objects.filter(pk=self.election.pk).update(status=Election.Status.finalized)

        resp = self._post_json({"candidate_id": self.ana.id, "quantity": 1})

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"], "election_not_active")

    def test_lost_race_is_409_and_retryable(self) -> None:
        self._login(self.voter)

        with patch.object(DjangoVoteStore, "increment_usage", return_value=False):
            resp = self._post_json({"candidate_id": self.ana.id, "quantity": 1})

        self.assertEqual(resp.status_code, 409)
        data = resp.json()
        self.assertFalse(data["ok"])
        self.assertEqual(data["error"], "conflict")
        self.assertTrue(data["retryable"])
        self.assertEqual(data["remaining"], 2)
        self.assertFalse(TallyEntry.objects.exists())

    def test_locked_database_is_409_not_500(self) -> None:
        self._login(self.voter)

        with patch.object(DjangoVoteStore, "increment_usage", side_effect=OperationalError("database is locked")):
            resp = self._post_json({"candidate_id": self.ana.id, "quantity": 1})

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"], "conflict")
        self.assertTrue(resp.json()["retryable"])

    def test_unknown_candidate_is_404(self) -> None:
        self._login(self.voter)

        resp = self._post_json({"candidate_id": 999_999, "quantity": 1})

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "not_found")


class BallotViewTests(_SessionMixin, TestCase):
    def test_lists_remaining_votes_per_office(self) -> None:
        election = create_election()
        office, (candidate,) = create_office(election=election, name="Presidencia", candidates=[("Ana", 1)])
        create_office(election=election, name="Tesorería")
        voter = create_voter(national_id="7101", full_name="Votante", base_votes=2)
        self._login(voter)
        self.client.post(
            reverse("election-vote-submit", args=[election.id, office.id]),
            data={"candidate_id": candidate.id, "quantity": 1},
        )

        resp = self.client.get(reverse("election-ballot", args=[election.id]))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            [(o["name"], o["remaining"]) for o in resp.json()["offices"]],
            [("Presidencia", 1), ("Tesorería", 2)],
        )

    def test_unknown_election_is_404(self) -> None:
        voter = create_voter(national_id="7102", full_name="Votante")
        self._login(voter)

        resp = self.client.get(reverse("election-ballot", args=[999_999]))

        self.assertEqual(resp.status_code, 404)


class PublicResultsViewTests(TestCase):
    @override_settings(VOTING_RESULTS_REFRESH_SECONDS=7)
    def test_results_are_public_and_zero_filled(self) -> None:
        election = create_election(name="Asamblea")
        office, (ana, beto) = create_office(
            election=election,
            name="Presidencia",
            candidates=[("Ana", 2), ("Beto", 1)],
        )
        TallyEntry.objects.create(election=election, office=office, candidate=ana, quantity=3)

        resp = self.client.get(reverse("election-public-results", args=[election.public_link]))

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["refresh_seconds"], 7)
        self.assertEqual(data["total_votes"], 3)
        candidates = data["offices"][0]["candidates"]
        self.assertEqual([(c["name"], c["votes"], c["percent"]) for c in candidates], [("Ana", 3, 100.0), ("Beto", 0, 0.0)])
        self.assertEqual(candidates[1]["candidate_id"], beto.id)

    def test_unknown_link_is_404(self) -> None:
        resp = self.client.get(reverse("election-public-results", args=["eleccion-nope"]))

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "not_found")


class ParticipationViewTests(_SessionMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.election = create_election()
        self.office, (self.ana,) = create_office(election=self.election, name="Presidencia", candidates=[("Ana", 1)])
        self.admin = create_voter(national_id="7201", full_name="Admin", role=Voter.Role.admin)
        self.voter = create_voter(national_id="7202", full_name="Votante")
        self.url = reverse("election-participation", args=[self.election.id])

    def test_admin_sees_who_voted_but_not_for_whom(self) -> None:
        self._login(self.voter)
        self.client.post(
            reverse("election-vote-submit", args=[self.election.id, self.office.id]),
            data={"candidate_id": self.ana.id, "quantity": 1},
        )
        self._login(self.admin)

        resp = self.client.get(self.url)

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["summary"]["voters_total"], 2)
        self.assertEqual(data["summary"]["voters_voted"], 1)
        voted = {v["full_name"]: v["has_voted"] for v in data["voters"]}
        self.assertEqual(voted, {"Admin": False, "Votante": True})
        self.assertNotIn("candidate", resp.content.decode())
        self.assertNotIn("Ana", resp.content.decode())

    def test_regular_voters_are_forbidden(self) -> None:
        self._login(self.voter)

        resp = self.client.get(self.url)

        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["error"], "forbidden")

    def test_anonymous_requests_are_rejected(self) -> None:
        self.assertEqual(self.client.get(self.url).status_code, 403)


class HealthViewTests(TestCase):
    def test_healthz(self) -> None:
        resp = self.client.get(reverse("healthz"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_readyz_when_migrated(self) -> None:
        resp = self.client.get(reverse("readyz"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ready")

    def test_readyz_when_database_is_down(self) -> None:
        with patch("voting.views_health.connection") as connection:
            connection.ensure_connection.side_effect = DatabaseError("connection refused")
            with self.assertLogs("voting.views_health", level="ERROR"):
                resp = self.client.get(reverse("readyz"))

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["status"], "not ready")

    def test_readyz_when_tables_are_missing(self) -> None:
        with patch("voting.views_health.connection") as connection:
            connection.introspection.table_names.return_value = [ParticipationRecord._meta.db_table]
            with self.assertLogs("voting.views_health", level="ERROR"):
                resp = self.client.get(reverse("readyz"))

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["missing_tables"], [TallyEntry._meta.db_table])
