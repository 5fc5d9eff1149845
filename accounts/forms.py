from django import forms

from .models import Role
from .services.gate import SELF_SERVICE_ROLES


class SignupForm(forms.Form):
    name = forms.CharField(min_length=2, max_length=120)
    email = forms.EmailField(max_length=254)
    password = forms.CharField(min_length=6, max_length=128, strip=False)
    role = forms.ChoiceField(
        choices=[(role.value, role.label) for role in SELF_SERVICE_ROLES],
        required=False,
    )

    def clean_name(self):
        return self.cleaned_data['name'].strip()

    def clean_role(self):
        return self.cleaned_data.get('role') or Role.REQUESTER


class SigninForm(forms.Form):
    email = forms.EmailField(max_length=254)
    password = forms.CharField(max_length=128, strip=False)
    role = forms.ChoiceField(choices=Role.choices)


class OtpForm(forms.Form):
    otp = forms.RegexField(
        regex=r'^\d{6}$',
        error_messages={'invalid': 'OTP must be 6 digits'},
    )
