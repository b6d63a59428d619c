"""
Management command to restore the install from a backup archive.

This command is used by:
- Disaster recovery on a replacement host, before the web app is reachable
- Operators restoring a known-good backup from a shell

It replaces the database and overwrites uploads, so it asks for the word
RESTORE before doing anything unless --yes is passed.
"""

from django.core.management.base import BaseCommand, CommandError

from apps.backups.credentials import clean_credentials
from apps.backups.exceptions import BackupError
from apps.backups.restore import newest_first, restore_from_storage
from apps.backups.storage import STORAGE_BACKENDS, get_storage_backend

CONFIRMATION_WORD = "RESTORE"


class Command(BaseCommand):
    help = "Restore the database and uploads from a backup stored at a provider"

    def add_arguments(self, parser):
        parser.add_argument(
            "--provider",
            required=True,
            choices=sorted(STORAGE_BACKENDS),
            help="Storage provider holding the backup",
        )
        parser.add_argument(
            "--credential",
            action="append",
            default=[],
            metavar="KEY=VALUE",
            help="Provider credential, repeat for each field (e.g. --credential bucket=studio)",
        )
        parser.add_argument(
            "--backup",
            dest="backup_key",
            help="Key of the archive to restore; prompts with the available archives if omitted",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List the available archives, newest first, and exit",
        )
        parser.add_argument(
            "--yes",
            action="store_true",
            help="Do not ask for confirmation",
        )

    def handle(self, *args, **options):
        provider = options["provider"]
        credentials = self.parse_credentials(options["credential"])

        try:
            storage = get_storage_backend(provider, clean_credentials(provider, credentials))
        except BackupError as e:
            raise CommandError(f"Cannot connect to {provider}: {e}")

        backup_key = options.get("backup_key")
        if options.get("list") or not backup_key:
            backups = self.list_backups(storage, provider)
            if options.get("list"):
                return
            backup_key = self.choose_backup(backups)

        self.stdout.write(self.style.WARNING(f"About to restore {backup_key} from {provider}."))
        self.stdout.write("  - The database will be replaced (all tables)")
        self.stdout.write("  - Uploaded files with the same name will be overwritten")

        if not options.get("yes"):
            answer = input(f'Type "{CONFIRMATION_WORD}" to proceed: ')
            if answer.strip() != CONFIRMATION_WORD:
                self.stdout.write("Restore cancelled.")
                return

        self.stdout.write(f"Restoring {backup_key}...")

        try:
            manifest = restore_from_storage(storage, backup_key)
        except BackupError as e:
            raise CommandError(f"Restore failed: {e}")

        created_at = manifest.get("created_at", "unknown date")
        self.stdout.write(self.style.SUCCESS(f"Restored {backup_key} (created {created_at})"))
        self.stdout.write(
            "Host settings (.env) are not part of a backup; review them before starting the app."
        )

    def parse_credentials(self, pairs):
        credentials = {}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep or not key.strip():
                raise CommandError(f"Credentials must be given as KEY=VALUE, got {pair!r}")
            credentials[key.strip()] = value
        return credentials

    def list_backups(self, storage, provider):
        try:
            backups = newest_first(storage.list())
        except BackupError as e:
            raise CommandError(f"Could not list backups at {provider}: {e}")

        if not backups:
            raise CommandError(f"No backups found at {provider}")

        self.stdout.write(f"Backups at {provider}, newest first:")
        for number, item in enumerate(backups, start=1):
            self.stdout.write(
                f"  {number}) {item['key']}  [{item['size']} bytes]  {item['last_modified']}"
            )
        return backups

    def choose_backup(self, backups):
        answer = input(f"Backup to restore (1-{len(backups)}): ").strip()
        if not answer.isdigit() or not 1 <= int(answer) <= len(backups):
            raise CommandError(f"Invalid selection: {answer!r}")
        return backups[int(answer) - 1]["key"]
