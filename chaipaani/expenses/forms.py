# expenses/forms.py
from django import forms

from .exceptions import InvalidArgument


def validated(form):
    """Return ``form.cleaned_data`` or raise InvalidArgument carrying the field errors."""
    if not form.is_valid():
        raise InvalidArgument("Please correct the highlighted fields.", fields=form.errors.get_json_data())
    return form.cleaned_data


class GroupCreationForm(forms.Form):
    name = forms.CharField(max_length=100)
    description = forms.CharField(required=False)
    category = forms.CharField(max_length=50, required=False)
    currency = forms.CharField(min_length=3, max_length=3, required=False)


class InvitationForm(forms.Form):
    email = forms.EmailField()


class AcceptInvitationForm(forms.Form):
    token = forms.CharField(max_length=64)


class TransferOwnershipForm(forms.Form):
    new_owner_id = forms.IntegerField()


class ExpenseForm(forms.Form):
    description = forms.CharField(max_length=200)
    amount = forms.DecimalField(max_digits=10, decimal_places=2)
    payer_id = forms.IntegerField(required=False)
    category = forms.CharField(max_length=50, required=False)
    notes = forms.CharField(required=False)


class SettlementForm(forms.Form):
    from_user_id = forms.IntegerField()
    to_user_id = forms.IntegerField()
    amount = forms.DecimalField(max_digits=10, decimal_places=2)
    description = forms.CharField(max_length=200, required=False)
