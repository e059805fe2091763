import logging
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from MessagingApp.models import Conversation
from MessagingApp.stores import MessageStore

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Tombstones messages older than each conversation's auto_delete_after_days."

    def add_arguments(self, parser):
        parser.add_argument("--dry-run", action="store_true", help="Only report how many messages would expire.")

    def handle(self, *args, **options):
        store = MessageStore()
        now = timezone.now()
        total = 0

        conversations = Conversation.objects.filter(is_active=True, auto_delete_enabled=True)
        for conversation in conversations.iterator():
            cutoff = now - timedelta(days=conversation.auto_delete_after_days)
            if options["dry_run"]:
                count = conversation.messages.filter(is_deleted=False, created_at__lt=cutoff).count()
            else:
                count = store.expire_older_than(conversation, cutoff)
            if count:
                logger.info("conversation %s: %d message(s) expired", conversation.id, count)
            total += count

        verb = "would expire" if options["dry_run"] else "expired"
        self.stdout.write(self.style.SUCCESS(f"{total} message(s) {verb}."))
