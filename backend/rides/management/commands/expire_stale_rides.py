from django.core.management.base import BaseCommand
from services.dispatch import dispatch_budget_seconds, expire_stale_rides


class Command(BaseCommand):
    help = "Time out searching rides older than the dispatch budget (e.g. after a server restart)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--max-age",
            type=int,
            default=None,
            help=f"Age in seconds after which a searching ride is stale (default: {dispatch_budget_seconds()}s + one interval).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show which rides would be timed out without changing them.",
        )

    def handle(self, *args, **options):
        ride_ids = expire_stale_rides(max_age_seconds=options["max_age"], dry_run=options["dry_run"])

        if options["dry_run"]:
            self.stdout.write(
                self.style.WARNING(f"DRY RUN: Would time out {len(ride_ids)} ride(s): {ride_ids}")
            )
            return

        self.stdout.write(
            self.style.SUCCESS(f"Timed out {len(ride_ids)} stale searching ride(s).")
        )
