from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.db import OperationalError
from django.test import TestCase, TransactionTestCase

from accounts.models import Identity, Role
from accounts.tests.clock import FakeClock
from accounts.tests.race import race
from donor.models import BloodDonor
from emergency.models import (
	EmergencyRequest,
	RequestStatus,
	Response,
	ResponseStatus,
	Urgency,
	Visibility,
)
from emergency.services.engine import EmergencyEngine
from emergency.services.proximity import GeoPoint, ProximityIndex
from emresource.exceptions import (
	Conflict,
	DuplicateResponse,
	Forbidden,
	NotActive,
	NotFound,
	Transient,
	ValidationError,
)

CENTER = GeoPoint(longitude=77.594566, latitude=12.971599)
# Degrees of latitude per kilometre on the mean sphere.
KM = 0.008993


def _identity(email, role=Role.REQUESTER):
	return Identity.objects.create_user(email, 'secret12', name=email.split('@')[0].title(), role=role)


def _request(requester, km_north=0.0, **extra):
	values = dict(
		requester=requester,
		resource_type='blood',
		urgency=Urgency.MEDIUM,
		blood_type='O-',
		latitude=Decimal('12.971599') + Decimal(str(round(km_north * KM, 6))),
		longitude=Decimal('77.594566'),
		city='Bengaluru',
		state='KA',
		description='Need O- blood urgently',
	)
	values.update(extra)
	return EmergencyRequest.objects.create(**values)


class CreateRequestTests(TestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.engine = EmergencyEngine(clock=self.clock)
		self.requester = _identity('req@x.com')

	def _payload(self, **overrides):
		data = {
			'resource_type': 'oxygen',
			'urgency': 'high',
			'latitude': '12.971599',
			'longitude': '77.594566',
			'city': 'Bengaluru',
			'state': 'KA',
			'description': 'Oxygen cylinder needed',
		}
		data.update(overrides)
		return data

	def test_creates_active_request_with_rank(self):
		request = self.engine.create_request(self.requester, self._payload())
		self.assertEqual(request.status, RequestStatus.ACTIVE)
		self.assertEqual(request.urgency_rank, 1)
		self.assertEqual(request.requester, self.requester)
		self.assertEqual(request.visibility, Visibility.PUBLIC)
		self.assertEqual(request.created_at, self.clock())

	def test_urgency_defaults_to_medium(self):
		request = self.engine.create_request(self.requester, self._payload(urgency=None))
		self.assertEqual(request.urgency, Urgency.MEDIUM)

	def test_validates_enumerations_and_location(self):
		for overrides, field in (
			({'resource_type': 'gold'}, 'resource_type'),
			({'urgency': 'whenever'}, 'urgency'),
			({'blood_type': 'Q+'}, 'blood_type'),
			({'latitude': None}, 'latitude'),
			({'deadline': (self.clock() - timedelta(hours=1)).isoformat()}, 'deadline'),
		):
			with self.subTest(field=field), self.assertRaises(ValidationError) as ctx:
				self.engine.create_request(self.requester, self._payload(**overrides))
			self.assertIn(field, ctx.exception.errors)
		self.assertEqual(EmergencyRequest.objects.count(), 0)


class FindNearbyTests(TestCase):
	def setUp(self):
		self.engine = EmergencyEngine()
		self.requester = _identity('req@x.com')

	def test_critical_request_outranks_closer_medium_one(self):
		critical = _request(self.requester, km_north=2, urgency=Urgency.CRITICAL)
		medium = _request(self.requester, km_north=1, urgency=Urgency.MEDIUM)

		matches = self.engine.find_nearby(CENTER, 5_000)
		self.assertEqual([m.obj for m in matches], [critical, medium])
		self.assertAlmostEqual(matches[0].distance_km, 2.0, places=1)

	def test_recency_breaks_urgency_ties(self):
		older = _request(self.requester, km_north=1, created_at=self.engine.clock() - timedelta(hours=2))
		newer = _request(self.requester, km_north=3)
		self.assertEqual([m.obj for m in self.engine.find_nearby(CENTER, 5_000)], [newer, older])

	def test_only_active_requests_within_deadline_are_returned(self):
		live = _request(self.requester, km_north=1)
		_request(self.requester, km_north=1, status=RequestStatus.FULFILLED)
		_request(self.requester, km_north=1, deadline=self.engine.clock() - timedelta(minutes=1))
		_request(self.requester, km_north=9)

		self.assertEqual([m.obj for m in self.engine.find_nearby(CENTER, 5_000)], [live])

	def test_filters_by_type_and_urgency(self):
		oxygen = _request(self.requester, resource_type='oxygen', urgency=Urgency.HIGH)
		_request(self.requester, resource_type='blood', urgency=Urgency.HIGH)
		_request(self.requester, resource_type='oxygen', urgency=Urgency.LOW)

		matches = self.engine.find_nearby(CENTER, 5_000, resource_type='oxygen', urgency='high')
		self.assertEqual([m.obj for m in matches], [oxygen])
		with self.assertRaises(ValidationError):
			self.engine.find_nearby(CENTER, 5_000, resource_type='gold')

	def test_restricted_visibility(self):
		public = _request(self.requester, km_north=1)
		donors_only = _request(self.requester, km_north=2, visibility=Visibility.DONORS_ONLY)
		facilities_only = _request(self.requester, km_north=3, visibility=Visibility.FACILITIES_ONLY)

		def visible(viewer):
			return {m.obj for m in self.engine.find_nearby(CENTER, 5_000, viewer=viewer)}

		self.assertEqual(visible(_identity('other@x.com')), {public})
		self.assertEqual(visible(_identity('donor@x.com', Role.DONOR)), {public, donors_only})
		self.assertEqual(visible(_identity('op@x.com', Role.FACILITY_OPERATOR)), {public, facilities_only})
		self.assertEqual(visible(self.requester), {public, donors_only, facilities_only})

	def test_store_failure_is_transient(self):
		with mock.patch('emergency.services.proximity.ProximityIndex._candidates', side_effect=OperationalError('locked')):
			with self.assertRaises(Transient):
				self.engine.find_nearby(CENTER, 5_000)


class FindNearbyDonorsTests(TestCase):
	def setUp(self):
		self.engine = EmergencyEngine()

	def _donor(self, email, km_north, **extra):
		values = dict(
			user=_identity(email, Role.DONOR),
			blood_type='O-',
			city='Bengaluru',
			phone='9876543210',
			latitude=Decimal('12.971599') + Decimal(str(round(km_north * KM, 6))),
			longitude=Decimal('77.594566'),
		)
		values.update(extra)
		return BloodDonor.objects.create(**values)

	def test_verified_and_rated_donors_win_distance_ties(self):
		plain = self._donor('plain@x.com', 1)
		rated = self._donor('rated@x.com', 1, rating_average=Decimal('4.50'))
		verified = self._donor('verified@x.com', 1, is_verified=True)

		views = self.engine.find_nearby_donors(CENTER, 5_000)
		self.assertEqual([v.id for v in views], [verified.pk, rated.pk, plain.pk])

	def test_unavailable_suspended_and_other_types_are_excluded(self):
		match = self._donor('match@x.com', 1)
		self._donor('busy@x.com', 1, is_available=False)
		self._donor('suspended@x.com', 1, status='suspended')
		self._donor('ab@x.com', 1, blood_type='AB+')

		views = self.engine.find_nearby_donors(CENTER, 5_000, blood_type='O-')
		self.assertEqual([v.id for v in views], [match.pk])

	def test_results_leave_redacted(self):
		self._donor('hidden@x.com', 1, show_full_name=False)
		view = self.engine.find_nearby_donors(CENTER, 5_000)[0]
		self.assertEqual(view.name, 'H***')
		self.assertEqual(view.phone, '987***10')
		self.assertEqual(view.email, 'h***@x.com')


class RespondTests(TestCase):
	def setUp(self):
		self.engine = EmergencyEngine()
		self.requester = _identity('req@x.com')
		self.request = _request(self.requester, urgency=Urgency.CRITICAL)
		self.first = _identity('first@x.com', Role.DONOR)
		self.second = _identity('second@x.com', Role.DONOR)

	def test_two_responders_both_persist(self):
		one = self.engine.respond(self.request.pk, self.first, {'message': 'On my way'})
		two = self.engine.respond(self.request.pk, self.second, {'message': 'Can come at 5pm'})

		self.assertEqual(one.status, ResponseStatus.PENDING)
		self.assertIsNotNone(one.responded_at)
		responders = set(Response.objects.filter(request=self.request).values_list('responder_id', flat=True))
		self.assertEqual(responders, {self.first.pk, self.second.pk})
		self.assertNotEqual(one.pk, two.pk)

	def test_duplicate_response_is_rejected(self):
		self.engine.respond(self.request.pk, self.first, {})
		with self.assertRaises(DuplicateResponse):
			self.engine.respond(self.request.pk, self.first, {'message': 'retry'})
		self.assertEqual(Response.objects.filter(request=self.request, responder=self.first).count(), 1)

	def test_cancelled_request_refuses_new_responses(self):
		self.engine.respond(self.request.pk, self.first, {})
		self.engine.respond(self.request.pk, self.second, {})

		cancelled = self.engine.update_status(self.request.pk, self.requester, RequestStatus.CANCELLED)
		self.assertEqual(cancelled.status, RequestStatus.CANCELLED)

		with self.assertRaises(NotActive):
			self.engine.respond(self.request.pk, _identity('third@x.com', Role.DONOR), {})
		self.assertEqual(Response.objects.filter(request=self.request).count(), 2)

	def test_overdue_request_refuses_responses(self):
		EmergencyRequest.objects.filter(pk=self.request.pk).update(deadline=self.engine.clock() - timedelta(seconds=1))
		with self.assertRaises(NotActive):
			self.engine.respond(self.request.pk, self.first, {})

	def test_requester_cannot_respond_to_own_request(self):
		with self.assertRaises(Forbidden):
			self.engine.respond(self.request.pk, self.requester, {})

	def test_unknown_request(self):
		with self.assertRaises(NotFound):
			self.engine.respond(999999, self.first, {})

	def test_invalid_contact_email(self):
		with self.assertRaises(ValidationError):
			self.engine.respond(self.request.pk, self.first, {'contact_email': 'nope'})


class StatusTransitionTests(TestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.engine = EmergencyEngine(clock=self.clock)
		self.requester = _identity('req@x.com')
		self.request = _request(self.requester)

	def test_terminal_state_is_left_only_once(self):
		self.engine.update_status(self.request.pk, self.requester, RequestStatus.FULFILLED)
		with self.assertRaises(Conflict):
			self.engine.update_status(self.request.pk, self.requester, RequestStatus.CANCELLED)
		self.request.refresh_from_db()
		self.assertEqual(self.request.status, RequestStatus.FULFILLED)

	def test_fulfilment_record(self):
		helper = _identity('helper@x.com', Role.DONOR)
		request = self.engine.update_status(
			self.request.pk, self.requester, RequestStatus.FULFILLED, notes='Two units delivered', fulfilled_by=helper.pk
		)
		self.assertEqual(request.fulfilled_by, helper)
		self.assertEqual(request.fulfilled_at, self.clock())
		self.assertEqual(request.resolution_notes, 'Two units delivered')

	def test_only_owner_or_admin_may_transition(self):
		with self.assertRaises(Forbidden):
			self.engine.update_status(self.request.pk, _identity('other@x.com'), RequestStatus.CANCELLED)

		admin = Identity.objects.create_superuser('admin@x.com', 'secret12')
		request = self.engine.update_status(self.request.pk, admin, RequestStatus.CANCELLED)
		self.assertEqual(request.status, RequestStatus.CANCELLED)

	def test_active_is_not_a_target(self):
		with self.assertRaises(ValidationError):
			self.engine.update_status(self.request.pk, self.requester, RequestStatus.ACTIVE)

	def test_unknown_fulfiller(self):
		with self.assertRaises(ValidationError):
			self.engine.update_status(self.request.pk, self.requester, RequestStatus.FULFILLED, fulfilled_by=999999)
		self.request.refresh_from_db()
		self.assertEqual(self.request.status, RequestStatus.ACTIVE)

	def test_expire_overdue_touches_only_active_rows(self):
		overdue = _request(self.requester, deadline=self.clock() + timedelta(minutes=5))
		done = _request(self.requester, deadline=self.clock() + timedelta(minutes=5), status=RequestStatus.FULFILLED)
		self.clock.advance(600)

		self.assertEqual(self.engine.expire_overdue(), 1)
		overdue.refresh_from_db()
		done.refresh_from_db()
		self.assertEqual(overdue.status, RequestStatus.EXPIRED)
		self.assertEqual(done.status, RequestStatus.FULFILLED)
		self.assertEqual(self.engine.expire_overdue(), 0)


class UpdateRequestTests(TestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.engine = EmergencyEngine(clock=self.clock)
		self.requester = _identity('req@x.com')
		self.request = _request(self.requester)

	def test_owner_edits_details_and_omitted_fields_stay(self):
		updated = self.engine.update_request(
			self.request.pk, self.requester, {'urgency': 'critical', 'description': 'Two units of O- needed'}
		)
		self.assertEqual(updated.urgency, Urgency.CRITICAL)
		self.assertEqual(updated.urgency_rank, 0)
		self.assertEqual(updated.description, 'Two units of O- needed')
		self.assertEqual(updated.city, 'Bengaluru')
		self.assertEqual(updated.blood_type, 'O-')

	def test_point_change_moves_request_in_index(self):
		with mock.patch.object(ProximityIndex, 'move', autospec=True, side_effect=ProximityIndex.move) as move:
			self.engine.update_request(self.request.pk, self.requester, {'city': 'Mysuru'})
			move.assert_not_called()
			self.engine.update_request(
				self.request.pk, self.requester, {'latitude': Decimal('13.007571'), 'longitude': Decimal('77.594566')}
			)
		self.assertEqual(move.call_count, 1)

		self.request.refresh_from_db()
		self.assertEqual(self.request.latitude, Decimal('13.007571'))
		self.assertEqual(self.engine.find_nearby(CENTER, 1_000), [])
		self.assertEqual([m.obj for m in self.engine.find_nearby(CENTER, 5_000)], [self.request])

	def test_only_owner_or_admin_may_edit(self):
		with self.assertRaises(Forbidden):
			self.engine.update_request(self.request.pk, _identity('other@x.com'), {'description': 'hijacked'})

		admin = Identity.objects.create_superuser('admin@x.com', 'secret12')
		updated = self.engine.update_request(self.request.pk, admin, {'description': 'Moderated'})
		self.assertEqual(updated.description, 'Moderated')

	def test_terminal_request_cannot_be_edited(self):
		self.engine.update_status(self.request.pk, self.requester, RequestStatus.CANCELLED)
		with self.assertRaises(NotActive):
			self.engine.update_request(self.request.pk, self.requester, {'description': 'too late'})

	def test_invalid_edit_leaves_row_untouched(self):
		with self.assertRaises(ValidationError) as ctx:
			self.engine.update_request(self.request.pk, self.requester, {'urgency': 'whenever', 'city': 'Mysuru'})
		self.assertIn('urgency', ctx.exception.errors)
		self.request.refresh_from_db()
		self.assertEqual(self.request.urgency, Urgency.MEDIUM)
		self.assertEqual(self.request.city, 'Bengaluru')


class ResponseDecisionTests(TestCase):
	def setUp(self):
		self.engine = EmergencyEngine()
		self.requester = _identity('req@x.com')
		self.request = _request(self.requester)
		self.responder = _identity('donor@x.com', Role.DONOR)
		self.response = self.engine.respond(self.request.pk, self.responder, {})

	def test_requester_accepts_once(self):
		accepted = self.engine.decide_response(self.request.pk, self.response.pk, self.requester, ResponseStatus.ACCEPTED)
		self.assertEqual(accepted.status, ResponseStatus.ACCEPTED)
		self.assertIsNotNone(accepted.status_changed_at)
		with self.assertRaises(Conflict):
			self.engine.decide_response(self.request.pk, self.response.pk, self.requester, ResponseStatus.DECLINED)

	def test_responder_cannot_accept_own_response(self):
		with self.assertRaises(Forbidden):
			self.engine.decide_response(self.request.pk, self.response.pk, self.responder, ResponseStatus.ACCEPTED)

	def test_decisions_stop_once_request_is_terminal(self):
		self.engine.update_status(self.request.pk, self.requester, RequestStatus.CANCELLED)
		with self.assertRaises(NotActive):
			self.engine.decide_response(self.request.pk, self.response.pk, self.requester, ResponseStatus.ACCEPTED)

	def test_pending_is_not_a_decision(self):
		with self.assertRaises(ValidationError):
			self.engine.decide_response(self.request.pk, self.response.pk, self.requester, ResponseStatus.PENDING)

	def test_unknown_response(self):
		with self.assertRaises(NotFound):
			self.engine.decide_response(self.request.pk, 999999, self.requester, ResponseStatus.ACCEPTED)


class ConcurrentWriteTests(TransactionTestCase):
	def setUp(self):
		self.engine = EmergencyEngine()
		self.requester = _identity('req@x.com')
		self.request = _request(self.requester, urgency=Urgency.CRITICAL)

	def test_same_responder_racing_lands_one_row(self):
		responder = _identity('donor@x.com', Role.DONOR)

		def respond():
			return self.engine.respond(self.request.pk, responder, {'message': 'On my way'})

		outcomes = race(respond, respond)
		self.assertEqual(sorted(type(outcome).__name__ for outcome in outcomes), ['DuplicateResponse', 'Response'])
		self.assertEqual(Response.objects.filter(request=self.request, responder=responder).count(), 1)

	def test_racing_transitions_leave_active_once(self):
		def fulfil():
			return self.engine.update_status(self.request.pk, self.requester, RequestStatus.FULFILLED)

		def cancel():
			return self.engine.update_status(self.request.pk, self.requester, RequestStatus.CANCELLED)

		outcomes = race(fulfil, cancel)
		winners = [outcome for outcome in outcomes if isinstance(outcome, EmergencyRequest)]
		self.assertEqual(len(winners), 1)
		self.assertEqual(sum(isinstance(outcome, Conflict) for outcome in outcomes), 1)
		self.request.refresh_from_db()
		self.assertEqual(self.request.status, winners[0].status)
