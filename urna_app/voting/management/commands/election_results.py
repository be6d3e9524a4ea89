import json
from typing import override

from django.core.management.base import BaseCommand, CommandError

from voting.exceptions import VotingError
from voting.tally import election_results


class Command(BaseCommand):
    help = "Print the current anonymous tally of an election, office by office."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument("election_id", type=int)
        parser.add_argument(
            "--json",
            action="store_true",
            help="Emit machine-readable JSON instead of a table.",
        )

    @override
    def handle(self, *args, **options) -> None:
        try:
            results = election_results(election_id=options["election_id"])
        except VotingError as exc:
            raise CommandError(str(exc)) from exc

        if options.get("json"):
            payload = {
                "election_id": results.election_id,
                "name": results.name,
                "status": results.status,
                "offices": [
                    {
                        "office_id": office.office_id,
                        "name": office.name,
                        "total_votes": office.total_votes,
                        "candidates": [
                            {"candidate_id": c.candidate_id, "name": c.name, "votes": c.votes}
                            for c in office.candidates
                        ],
                    }
                    for office in results.offices
                ],
            }
            self.stdout.write(json.dumps(payload, sort_keys=True))
            return

        self.stdout.write(f"{results.name} [{results.status}]")
        for office in results.offices:
            self.stdout.write(f"\n{office.name} ({office.total_votes} votes)")
            if not office.candidates:
                self.stdout.write("  (no candidates)")
                continue
            for position, c in enumerate(office.candidates, start=1):
                number = f"#{c.list_number} " if c.list_number is not None else ""
                self.stdout.write(f"  {position}. {number}{c.name}: {c.votes} ({c.percent}%)")
