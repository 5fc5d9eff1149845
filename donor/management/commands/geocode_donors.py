from __future__ import annotations

from django.core.management.base import BaseCommand
from django.db.models import Q

from donor.models import BloodDonor
from donor.signals import locate_donor


class Command(BaseCommand):
	help = "Give address-only donors coordinates so radius searches can find them."

	def add_arguments(self, parser):
		parser.add_argument('--force', action='store_true', help='Look up donors that already have a point as well.')
		parser.add_argument('--limit', type=int, help='Stop after this many donors.')
		parser.add_argument('--dry-run', action='store_true', help='Print the lookups without writing them.')
		parser.add_argument('--country', type=str, help='ISO country code passed to the geocoder as a hint.')

	def _pending(self, force, limit):
		donors = BloodDonor.objects.select_related('user').exclude(address='', city='').order_by('id')
		if not force:
			donors = donors.filter(Q(latitude__isnull=True) | Q(longitude__isnull=True))
		return list(donors[:limit] if limit else donors)

	def handle(self, *args, **options):
		donors = self._pending(options['force'], options.get('limit'))
		if not donors:
			self.stdout.write(self.style.SUCCESS('Every donor with an address already has coordinates.'))
			return

		located = unresolved = 0
		for donor in donors:
			result = locate_donor(donor, country_bias=options.get('country'))
			if result is None:
				unresolved += 1
				self.stderr.write(f"No match for donor #{donor.pk} ({donor.get_name})")
				continue

			located += 1
			if options['dry_run']:
				self.stdout.write(f"[dry-run] donor #{donor.pk}: {result.latitude}, {result.longitude} ({result.provider})")
				continue

			# A looked-up point is never treated as verified.
			BloodDonor.objects.filter(pk=donor.pk).update(
				latitude=result.latitude,
				longitude=result.longitude,
				location_verified=False,
			)
			self.stdout.write(f"donor #{donor.pk}: {result.latitude}, {result.longitude} ({result.provider})")

		self.stdout.write(self.style.SUCCESS(f"Located {located} of {len(donors)} donors."))
		if unresolved:
			self.stdout.write(self.style.WARNING(f"{unresolved} donors could not be located."))
