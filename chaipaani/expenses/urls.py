from django.urls import path

from . import views

urlpatterns = [
    # Group management
    path('groups/', views.group_list, name='group_list'),
    path('groups/<int:group_id>/', views.group_detail, name='group_detail'),
    path('groups/<int:group_id>/delete/', views.delete_group, name='delete_group'),
    path('groups/<int:group_id>/leave/', views.leave_group, name='leave_group'),
    path('groups/<int:group_id>/transfer/', views.transfer_ownership, name='transfer_ownership'),
    path('groups/<int:group_id>/members/', views.group_members, name='group_members'),

    # Invitations
    path('groups/<int:group_id>/invitations/', views.group_invitations, name='group_invitations'),
    path('groups/<int:group_id>/invitations/resend/', views.resend_invitation, name='resend_invitation'),
    path('invitations/<int:invitation_id>/revoke/', views.revoke_invitation, name='revoke_invitation'),
    path('invitations/accept/', views.accept_invitation, name='accept_invitation'),

    # Expenses, balances and settlements
    path('groups/<int:group_id>/expenses/', views.group_expenses, name='group_expenses'),
    path('groups/<int:group_id>/balances/', views.group_balances, name='group_balances'),
    path('groups/<int:group_id>/balances/<int:user_id>/', views.user_balance, name='user_balance'),
    path('groups/<int:group_id>/settlements/', views.group_settlements, name='group_settlements'),

    # Notifications
    path('notifications/', views.notification_list, name='notification_list'),
    path('notifications/<int:notification_id>/read/', views.mark_notification_read,
         name='mark_notification_read'),
]
