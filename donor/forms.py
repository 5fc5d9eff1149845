from django import forms
from django.utils import timezone

from .models import BloodDonor, BloodType


class DonorForm(forms.ModelForm):
    blood_type = forms.ChoiceField(choices=BloodType.choices)

    class Meta:
        model = BloodDonor
        fields = [
            'blood_type',
            'address',
            'city',
            'state',
            'zipcode',
            'phone',
            'latitude',
            'longitude',
            'last_donated_at',
            'show_full_name',
            'show_phone',
            'show_email',
            'show_exact_location',
            'max_disclosure_km',
        ]

    def clean(self):
        cleaned = super().clean()
        latitude = cleaned.get('latitude')
        longitude = cleaned.get('longitude')
        if (latitude is None) != (longitude is None):
            raise forms.ValidationError('Please provide both latitude and longitude or leave both blank.')
        return cleaned

    def clean_last_donated_at(self):
        return _not_in_future(self.cleaned_data.get('last_donated_at'))


class AvailabilityForm(forms.Form):
    is_available = forms.BooleanField(required=False)
    last_donated_at = forms.DateField(required=False)

    def clean_last_donated_at(self):
        return _not_in_future(self.cleaned_data.get('last_donated_at'))


def _not_in_future(value):
    if value and value > timezone.now().date():
        raise forms.ValidationError('Last donation date cannot be in the future.')
    return value
