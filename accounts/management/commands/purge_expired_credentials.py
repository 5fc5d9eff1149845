from django.core.management.base import BaseCommand

from accounts.models import OneTimeCredential, PendingAuthContext
from accounts.services.otp import OtpManager


class Command(BaseCommand):
	help = "Delete expired one-time codes and the pending sign-in/sign-up contexts that depended on them."

	def add_arguments(self, parser):
		parser.add_argument('--dry-run', action='store_true', help='Only report how many rows would be removed.')

	def handle(self, *args, **options):
		manager = OtpManager()
		if options['dry_run']:
			now = manager.clock()
			credentials = OneTimeCredential.objects.filter(expires_at__lte=now).count()
			contexts = PendingAuthContext.objects.filter(expires_at__lte=now).count()
			self.stdout.write(f"DRY-RUN would purge {credentials} credentials and {contexts} pending contexts")
			return

		credentials, contexts = manager.purge_expired()
		self.stdout.write(self.style.SUCCESS(f"Purged {credentials} credentials and {contexts} pending contexts."))
