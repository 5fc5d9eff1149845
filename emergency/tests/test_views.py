from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import Client, TestCase
from django.urls import reverse
from django.utils import timezone

from accounts.models import Identity, Role
from emergency.models import EmergencyRequest, FacilityType, MedicalFacility, RequestStatus, Response, Visibility
from emergency.tasks import expire_overdue_requests

CENTER = {'lat': '12.971599', 'lng': '77.594566'}


def _identity(email, role=Role.REQUESTER):
	return Identity.objects.create_user(email, 'secret12', name=email.split('@')[0].title(), role=role)


def _request(requester, **extra):
	values = dict(
		requester=requester,
		resource_type='blood',
		urgency='medium',
		blood_type='O-',
		latitude=Decimal('12.980592'),
		longitude=Decimal('77.594566'),
		city='Bengaluru',
		state='KA',
		description='Need O- blood',
	)
	values.update(extra)
	return EmergencyRequest.objects.create(**values)


class EmergencyEndpointTests(TestCase):
	def setUp(self):
		self.requester = _identity('req@x.com')
		self.donor = _identity('donor@x.com', Role.DONOR)
		self.client = Client()
		self.client.force_login(self.requester)

	def _send(self, method, url, payload=None, client=None):
		client = client or self.client
		return getattr(client, method)(url, data=payload or {}, content_type='application/json')

	def _as(self, identity):
		client = Client()
		client.force_login(identity)
		return client

	def test_create_request_round_trip(self):
		response = self._send('post', reverse('emergency-create'), {
			'type': 'blood',
			'urgency': 'critical',
			'bloodType': 'O-',
			'location': {'type': 'Point', 'coordinates': [77.594566, 12.971599]},
			'address': {'street': '1 MG Road', 'city': 'Bengaluru', 'state': 'KA'},
			'patient': {'name': 'Asha', 'age': 34, 'hospital': 'City Hospital'},
			'quantity': {'units': 2},
			'description': 'Accident victim needs O- blood',
		})
		self.assertEqual(response.status_code, 201)
		data = response.json()['data']
		self.assertEqual(data['urgency'], 'critical')
		self.assertEqual(data['status'], 'active')
		self.assertEqual(data['location']['coordinates'], [77.594566, 12.971599])
		self.assertEqual(data['patient']['age'], 34)
		self.assertEqual(data['requester']['email'], 'req@x.com')

	def test_create_request_validation(self):
		response = self._send('post', reverse('emergency-create'), {'type': 'blood', 'description': 'x'})
		body = response.json()
		self.assertEqual(response.status_code, 400)
		self.assertFalse(body['success'])
		self.assertIn('latitude', body['errors'])
		self.assertIn('city', body['errors'])

	def test_anonymous_access_is_unauthorized(self):
		self.assertEqual(Client().get(reverse('emergency-nearby'), CENTER).status_code, 401)

	def test_nearby_orders_by_urgency(self):
		medium = _request(self.requester)
		critical = _request(self.requester, urgency='critical', latitude=Decimal('12.989585'))
		response = self._as(self.donor).get(reverse('emergency-nearby'), {**CENTER, 'radius': '5000'})
		self.assertEqual(response.status_code, 200)
		body = response.json()
		self.assertEqual(body['count'], 2)
		self.assertEqual([item['id'] for item in body['data']], [critical.pk, medium.pk])
		self.assertAlmostEqual(body['data'][1]['distanceKm'], 1.0, places=1)

	def test_nearby_rejects_bad_input(self):
		self.assertEqual(self.client.get(reverse('emergency-nearby'), {'lat': '12'}).status_code, 400)
		response = self.client.get(reverse('emergency-nearby'), {**CENTER, 'type': 'gold'})
		self.assertEqual(response.status_code, 400)
		self.assertIn('type', response.json()['errors'])

	def test_respond_then_duplicate(self):
		request = _request(self.requester)
		url = reverse('emergency-respond', args=[request.pk])
		payload = {
			'message': 'I can donate',
			'contactInfo': {'phone': '9876543210'},
			'availability': {'date': timezone.now().date().isoformat(), 'time': 'evening'},
		}
		donor_client = self._as(self.donor)
		first = self._send('post', url, payload, client=donor_client)
		self.assertEqual(first.status_code, 201)
		self.assertEqual(first.json()['data']['status'], 'pending')
		self.assertEqual(first.json()['data']['availability']['time'], 'evening')

		again = self._send('post', url, payload, client=donor_client)
		self.assertEqual(again.status_code, 409)
		self.assertEqual(Response.objects.filter(request=request).count(), 1)

	def test_respond_to_missing_request(self):
		response = self._send('post', reverse('emergency-respond', args=[999999]), {}, client=self._as(self.donor))
		self.assertEqual(response.status_code, 404)

	def test_status_transition_is_owner_only_and_single_shot(self):
		request = _request(self.requester)
		url = reverse('emergency-status', args=[request.pk])

		self.assertEqual(self._send('patch', url, {'status': 'cancelled'}, client=self._as(self.donor)).status_code, 403)

		response = self._send('patch', url, {'status': 'fulfilled', 'notes': 'Done', 'fulfilledBy': self.donor.pk})
		self.assertEqual(response.status_code, 200)
		data = response.json()['data']
		self.assertEqual(data['status'], 'fulfilled')
		self.assertEqual(data['fulfillment']['fulfilledBy']['id'], self.donor.pk)

		self.assertEqual(self._send('patch', url, {'status': 'cancelled'}).status_code, 409)
		self.assertEqual(self._send('patch', url, {'status': 'bogus'}).status_code, 400)

	def test_cancelled_request_rejects_responses(self):
		request = _request(self.requester)
		self._send('patch', reverse('emergency-status', args=[request.pk]), {'status': 'cancelled'})
		response = self._send('post', reverse('emergency-respond', args=[request.pk]), {}, client=self._as(self.donor))
		self.assertEqual(response.status_code, 409)

	def test_owner_edits_active_request(self):
		request = _request(self.requester)
		url = reverse('emergency-detail', args=[request.pk])

		response = self._send('put', url, {
			'urgency': 'high',
			'address': {'city': 'Mysuru'},
			'location': {'type': 'Point', 'coordinates': [76.639381, 12.295810]},
		})
		self.assertEqual(response.status_code, 200)
		data = response.json()['data']
		self.assertEqual(data['urgency'], 'high')
		self.assertEqual(data['address']['city'], 'Mysuru')
		self.assertEqual(data['address']['state'], 'KA')
		self.assertEqual(data['location']['coordinates'], [76.639381, 12.29581])
		self.assertEqual(data['description'], 'Need O- blood')

		self.assertEqual(self._send('put', url, {'description': 'mine now'}, client=self._as(self.donor)).status_code, 403)
		self.assertEqual(self._send('put', url, {'urgency': 'whenever'}).status_code, 400)

	def test_delete_withdraws_request(self):
		request = _request(self.requester)
		url = reverse('emergency-detail', args=[request.pk])

		self.assertEqual(self._send('delete', url, client=self._as(self.donor)).status_code, 403)
		response = self._send('delete', url)
		self.assertEqual(response.status_code, 200)
		request.refresh_from_db()
		self.assertEqual(request.status, RequestStatus.CANCELLED)

		self.assertEqual(self._send('put', url, {'description': 'edit'}).status_code, 409)
		self.assertEqual(self._send('delete', url).status_code, 409)

	def test_response_decision(self):
		request = _request(self.requester)
		self._send('post', reverse('emergency-respond', args=[request.pk]), {}, client=self._as(self.donor))
		response_id = Response.objects.get(request=request).pk
		url = reverse('emergency-response-decision', args=[request.pk, response_id])

		self.assertEqual(self._send('patch', url, {'status': 'accepted'}, client=self._as(self.donor)).status_code, 403)
		decided = self._send('patch', url, {'status': 'accepted'})
		self.assertEqual(decided.status_code, 200)
		self.assertEqual(decided.json()['data']['status'], 'accepted')
		self.assertEqual(self._send('patch', url, {'status': 'declined'}).status_code, 409)

	def test_detail_shows_responses_to_owner_only(self):
		request = _request(self.requester)
		self._send('post', reverse('emergency-respond', args=[request.pk]), {}, client=self._as(self.donor))
		url = reverse('emergency-detail', args=[request.pk])

		owner_view = self.client.get(url).json()['data']
		self.assertEqual(len(owner_view['responses']), 1)

		other_view = self._as(_identity('other@x.com')).get(url).json()['data']
		self.assertNotIn('responses', other_view)
		self.assertEqual(other_view['responseCount'], 1)

	def test_restricted_request_is_hidden_from_other_roles(self):
		request = _request(self.requester, visibility=Visibility.FACILITIES_ONLY)
		url = reverse('emergency-detail', args=[request.pk])
		self.assertEqual(self._as(self.donor).get(url).status_code, 404)
		self.assertEqual(self._as(_identity('op@x.com', Role.FACILITY_OPERATOR)).get(url).status_code, 200)

	def test_listing_filters_and_pages(self):
		for _ in range(3):
			_request(self.requester)
		_request(self.requester, resource_type='oxygen', urgency='critical')
		_request(self.requester, status=RequestStatus.CANCELLED)

		body = self.client.get(reverse('emergency-list'), {'limit': 2}).json()
		self.assertEqual(body['total'], 4)
		self.assertEqual(body['pages'], 2)
		self.assertEqual(body['data'][0]['type'], 'oxygen')

		body = self.client.get(reverse('emergency-list'), {'type': 'oxygen'}).json()
		self.assertEqual(body['total'], 1)
		body = self.client.get(reverse('emergency-list'), {'status': 'cancelled'}).json()
		self.assertEqual(body['total'], 1)

	def test_user_views(self):
		request = _request(self.requester)
		_request(self.requester)
		self._send('post', reverse('emergency-respond', args=[request.pk]), {'message': 'hi'}, client=self._as(self.donor))

		mine = self.client.get(reverse('emergency-user-requests')).json()
		self.assertEqual(mine['count'], 2)

		incoming = self.client.get(reverse('emergency-incoming-responses')).json()['data']
		self.assertEqual([item['id'] for item in incoming], [request.pk])
		self.assertEqual(incoming[0]['responses'][0]['message'], 'hi')

		outgoing = self._as(self.donor).get(reverse('emergency-outgoing-responses')).json()['data']
		self.assertEqual(outgoing[0]['id'], request.pk)
		self.assertEqual(outgoing[0]['myResponse']['message'], 'hi')

	def test_stats_overview(self):
		_request(self.requester, urgency='critical')
		_request(self.requester, status=RequestStatus.FULFILLED)
		data = self.client.get(reverse('emergency-stats')).json()['data']
		self.assertEqual(data['activeRequests'], 1)
		self.assertEqual(data['criticalRequests'], 1)
		self.assertEqual(data['fulfilledRequests'], 1)

	def test_wrong_method(self):
		self.assertEqual(self.client.get(reverse('emergency-create')).status_code, 405)


class FacilityEndpointTests(TestCase):
	def setUp(self):
		self.client = Client()
		self.client.force_login(_identity('req@x.com'))
		common = dict(address='1 Main Road', city='Bengaluru', state='KA', phone='080000000', longitude=Decimal('77.594566'))
		self.hospital = MedicalFacility.objects.create(
			name='City Hospital', facility_type=FacilityType.HOSPITAL, latitude=Decimal('12.980592'), **common
		)
		self.bank = MedicalFacility.objects.create(
			name='Blood Bank', facility_type=FacilityType.BLOOD_BANK, latitude=Decimal('12.975599'),
			has_blood_bank=True, **common
		)
		MedicalFacility.objects.create(
			name='Closed Clinic', facility_type=FacilityType.CLINIC, latitude=Decimal('12.972599'), is_active=False, **common
		)

	def test_nearest_active_facilities_first(self):
		body = self.client.get(reverse('facilities-nearby'), CENTER).json()
		self.assertEqual([item['name'] for item in body['data']], ['Blood Bank', 'City Hospital'])
		self.assertTrue(body['data'][0]['resources']['bloodBank'])

	def test_type_filter(self):
		body = self.client.get(reverse('facilities-nearby'), {**CENTER, 'type': 'hospital'}).json()
		self.assertEqual([item['id'] for item in body['data']], [self.hospital.pk])


class ExpireOverdueTests(TestCase):
	def setUp(self):
		requester = _identity('req@x.com')
		self.overdue = _request(requester)
		EmergencyRequest.objects.filter(pk=self.overdue.pk).update(deadline=timezone.now() - timedelta(minutes=5))
		self.open = _request(requester, deadline=timezone.now() + timedelta(days=1))

	def test_dry_run_lists_without_changing(self):
		out = StringIO()
		call_command('expire_overdue_requests', '--dry-run', stdout=out)
		self.assertIn(f"DRY-RUN #{self.overdue.pk}", out.getvalue())
		self.assertIn('1 requests are overdue.', out.getvalue())
		self.overdue.refresh_from_db()
		self.assertEqual(self.overdue.status, RequestStatus.ACTIVE)

	def test_command_expires_overdue_requests(self):
		out = StringIO()
		call_command('expire_overdue_requests', stdout=out)
		self.assertIn('Expired 1 overdue requests.', out.getvalue())
		self.overdue.refresh_from_db()
		self.open.refresh_from_db()
		self.assertEqual(self.overdue.status, RequestStatus.EXPIRED)
		self.assertEqual(self.open.status, RequestStatus.ACTIVE)

	def test_periodic_task(self):
		self.assertEqual(expire_overdue_requests(), 1)
		self.assertEqual(expire_overdue_requests(), 0)
