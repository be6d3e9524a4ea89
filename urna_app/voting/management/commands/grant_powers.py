from typing import override

from django.core.management.base import BaseCommand, CommandError

from voting.elections_services import grant_powers
from voting.exceptions import VotingError


class Command(BaseCommand):
    help = "Grant (or, with a negative number, revoke) delegated powers for a voter."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument("voter_id", type=int)
        parser.add_argument("powers", type=int, help="Powers to add; negative values revoke.")
        parser.add_argument("--reason", default="", help="Why the powers were delegated.")
        parser.add_argument("--granted-by", default="", help="Who authorised the grant.")

    @override
    def handle(self, *args, **options) -> None:
        try:
            voter = grant_powers(
                voter_id=options["voter_id"],
                powers=options["powers"],
                reason=options["reason"],
                granted_by=options["granted_by"],
            )
        except VotingError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            f"{voter.full_name}: powers={voter.powers} entitlement={voter.entitlement}"
        )
