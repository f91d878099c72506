from django.contrib.auth.backends import ModelBackend
from django.contrib.auth.models import User
from django.db.models import Q


class EmailOrUsernameModelBackend(ModelBackend):
    """
    Custom authentication backend that allows login with email or username.
    Emails match case-insensitively.
    """
    def authenticate(self, request, username=None, password=None, **kwargs):
        if username is None:
            username = kwargs.get(User.USERNAME_FIELD)
        if username is None or password is None:
            return None

        candidates = User.objects.filter(Q(username=username) | Q(email__iexact=username)).order_by('id')
        for user in candidates:
            if user.check_password(password) and self.user_can_authenticate(user):
                return user

        # Run the hasher once anyway so missing users take as long as wrong passwords
        if not candidates:
            User().set_password(password)
        return None
