from django import forms
from django.utils import timezone

from donor.models import BloodType

from .models import EmergencyRequest, RequestStatus, ResponseStatus, TERMINAL_STATUSES


class EmergencyRequestForm(forms.ModelForm):
    class Meta:
        model = EmergencyRequest
        fields = [
            'resource_type',
            'urgency',
            'blood_type',
            'patient_name',
            'patient_age',
            'patient_condition',
            'hospital',
            'latitude',
            'longitude',
            'address',
            'city',
            'state',
            'zipcode',
            'contact_phone',
            'contact_email',
            'description',
            'quantity_units',
            'quantity_description',
            'deadline',
            'visibility',
        ]

    def __init__(self, *args, **kwargs):
        self.now = kwargs.pop('now', None) or timezone.now()
        super().__init__(*args, **kwargs)
        # Urgency and visibility fall back to their model defaults when omitted.
        self.fields['urgency'].required = False
        self.fields['visibility'].required = False

    def clean_urgency(self):
        return self.cleaned_data.get('urgency') or EmergencyRequest._meta.get_field('urgency').default

    def clean_visibility(self):
        return self.cleaned_data.get('visibility') or EmergencyRequest._meta.get_field('visibility').default

    def clean_deadline(self):
        deadline = self.cleaned_data.get('deadline')
        if deadline and deadline <= self.now:
            raise forms.ValidationError('Deadline must be in the future.')
        return deadline


class ResponseForm(forms.Form):
    message = forms.CharField(max_length=500, required=False)
    contact_phone = forms.CharField(max_length=20, required=False)
    contact_email = forms.EmailField(required=False)
    available_on = forms.DateField(required=False)
    available_time = forms.CharField(max_length=50, required=False)


class StatusForm(forms.Form):
    status = forms.ChoiceField(choices=[(status.value, status.label) for status in TERMINAL_STATUSES])
    notes = forms.CharField(max_length=500, required=False)
    fulfilled_by = forms.IntegerField(required=False, min_value=1)

    def clean(self):
        cleaned = super().clean()
        if cleaned.get('fulfilled_by') and cleaned.get('status') != RequestStatus.FULFILLED:
            raise forms.ValidationError('A fulfiller can only be recorded when fulfilling a request.')
        return cleaned


class ResponseDecisionForm(forms.Form):
    status = forms.ChoiceField(choices=[
        (ResponseStatus.ACCEPTED.value, ResponseStatus.ACCEPTED.label),
        (ResponseStatus.DECLINED.value, ResponseStatus.DECLINED.label),
    ])


class RequestFilterForm(forms.Form):
    type = forms.ChoiceField(choices=EmergencyRequest._meta.get_field('resource_type').choices, required=False)
    urgency = forms.ChoiceField(choices=EmergencyRequest._meta.get_field('urgency').choices, required=False)
    status = forms.ChoiceField(choices=RequestStatus.choices, required=False)
    bloodType = forms.ChoiceField(choices=BloodType.choices, required=False)
    city = forms.CharField(max_length=100, required=False)
    state = forms.CharField(max_length=100, required=False)
    page = forms.IntegerField(min_value=1, required=False)
    limit = forms.IntegerField(min_value=1, max_value=100, required=False)
