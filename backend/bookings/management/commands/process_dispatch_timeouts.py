from django.core.management.base import BaseCommand

from bookings.services.dispatch_sweeper import process_dispatch_timeouts


class Command(BaseCommand):
    help = "Expire dispatch rounds whose deadline passed and widen the search or close the booking."

    def add_arguments(self, parser):
        parser.add_argument(
            "--grace",
            type=int,
            default=None,
            help="Seconds past the deadline before a round is swept (default: DISPATCH_SWEEP_GRACE_SECONDS).",
        )

    def handle(self, *args, **options):
        expired_count, redispatched_count = process_dispatch_timeouts(grace_seconds=options["grace"])

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {expired_count} round(s); started a new round for {redispatched_count} booking(s)."
            )
        )
