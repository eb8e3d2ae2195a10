from django.core.management.base import BaseCommand

from counts.services.sessions import flag_idle_sessions


class Command(BaseCommand):
    help = "Add an idle note to open sessions with no recent activity."

    def handle(self, *args, **options):
        flagged = flag_idle_sessions()
        self.stdout.write(self.style.SUCCESS(f"Flagged {flagged} idle session(s)."))
