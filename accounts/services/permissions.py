"""Role to capability mapping, consulted once per call at the gate boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from accounts.models import Role
from emresource.exceptions import Forbidden, Unauthorized


CREATE_REQUEST = 'emergency.create'
VIEW_REQUESTS = 'emergency.view'
RESPOND_TO_REQUEST = 'emergency.respond'
MANAGE_ANY_REQUEST = 'emergency.manage_any'
SEARCH_DONORS = 'donor.search'
MANAGE_DONOR_PROFILE = 'donor.manage_profile'
MODERATE_DONORS = 'donor.moderate'
SEARCH_FACILITIES = 'facility.search'
VIEW_STATS = 'stats.view'

_BASE = frozenset({CREATE_REQUEST, VIEW_REQUESTS, RESPOND_TO_REQUEST, SEARCH_DONORS, SEARCH_FACILITIES, VIEW_STATS})

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
	Role.REQUESTER: _BASE,
	Role.DONOR: _BASE | {MANAGE_DONOR_PROFILE},
	Role.FACILITY_OPERATOR: _BASE,
	Role.ADMIN: _BASE | {MANAGE_DONOR_PROFILE, MANAGE_ANY_REQUEST, MODERATE_DONORS},
}

# Where each role lands after a successful sign-in.
ROLE_DESTINATIONS: Dict[str, str] = {
	Role.REQUESTER: '/dashboard',
	Role.DONOR: '/donor/dashboard',
	Role.FACILITY_OPERATOR: '/hospital/dashboard',
	Role.ADMIN: '/admin/dashboard',
}


@dataclass(frozen=True)
class AuthorizationDecision:
	allowed: bool
	capability: str
	role: Optional[str]
	reason: str = ''


def destination_for(role: str) -> str:
	return ROLE_DESTINATIONS[Role(role)]


def authorize(identity, capability: str) -> AuthorizationDecision:
	if identity is None or not getattr(identity, 'is_authenticated', False):
		return AuthorizationDecision(False, capability, None, 'not-authenticated')
	if not identity.is_active:
		return AuthorizationDecision(False, capability, identity.role, 'inactive')
	granted = ROLE_CAPABILITIES.get(identity.role, frozenset())
	if capability in granted:
		return AuthorizationDecision(True, capability, identity.role)
	return AuthorizationDecision(False, capability, identity.role, 'role-lacks-capability')


def require(identity, capability: str) -> AuthorizationDecision:
	decision = authorize(identity, capability)
	if decision.allowed:
		return decision
	if decision.reason == 'not-authenticated':
		raise Unauthorized()
	raise Forbidden(f"Your account role does not allow {capability}")
