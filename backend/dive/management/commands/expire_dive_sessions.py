from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand

from dive import services
from dive.locks import LockHeartbeat, LockLost, RedisLock

LOCK_KEY = "dive:sweeper"


class Command(BaseCommand):
    help = "Expire dive sessions idle past the timeout, releasing their reservations"

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=None,
            help="Idle seconds before a session expires (default: DIVE_SESSION_TIMEOUT_SECONDS)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List stale sessions without expiring them",
        )
        parser.add_argument(
            "--lock-ttl",
            type=int,
            default=getattr(settings, "DIVE_SWEEPER_LOCK_TTL", 60),
            help="Sweeper lock TTL in seconds",
        )

    def handle(self, *args, **options):
        timeout = None
        if options["timeout"] is not None:
            timeout = timedelta(seconds=options["timeout"])

        if options["dry_run"]:
            stale = services.stale_session_ids(timeout=timeout)
            for session_id in stale:
                self.stdout.write(f"[SWEEPER] stale: {session_id}")
            self.stdout.write(self.style.SUCCESS(f"[SWEEPER] {len(stale)} stale session(s)"))
            return

        lock = RedisLock(LOCK_KEY, options["lock_ttl"])
        if not lock.acquire():
            self.stdout.write(self.style.WARNING("[SWEEPER] Another sweeper is running. Exiting."))
            return

        heartbeat = LockHeartbeat(lock, every_seconds=max(options["lock_ttl"] / 3, 1))
        expired = []
        try:
            for session_id in services.stale_session_ids(timeout=timeout):
                heartbeat.tick()
                expired.extend(services.expire_sessions([session_id], timeout=timeout))
        except LockLost as e:
            self.stdout.write(self.style.ERROR(f"[SWEEPER] {e}. Stopping."))
        finally:
            lock.release()

        for session_id in expired:
            self.stdout.write(f"[SWEEPER] expired: {session_id}")
        self.stdout.write(self.style.SUCCESS(f"[SWEEPER] {len(expired)} session(s) expired"))
