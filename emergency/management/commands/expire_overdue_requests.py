from django.core.management.base import BaseCommand

from emergency.models import EmergencyRequest, RequestStatus
from emergency.services.engine import EmergencyEngine


class Command(BaseCommand):
	help = "Move active emergency requests whose deadline has passed to the expired state."

	def add_arguments(self, parser):
		parser.add_argument('--dry-run', action='store_true', help='List overdue requests without changing them.')

	def handle(self, *args, **options):
		engine = EmergencyEngine()
		if options['dry_run']:
			overdue = EmergencyRequest.objects.filter(
				status=RequestStatus.ACTIVE,
				deadline__isnull=False,
				deadline__lte=engine.clock(),
			).order_by('deadline')
			for request in overdue:
				self.stdout.write(f"DRY-RUN #{request.id} {request.resource_type} deadline {request.deadline.isoformat()}")
			self.stdout.write(f"{overdue.count()} requests are overdue.")
			return

		expired = engine.expire_overdue()
		self.stdout.write(self.style.SUCCESS(f"Expired {expired} overdue requests."))
