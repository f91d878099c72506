from django.contrib import admin
from .models import Group, Membership, UserProfile, Invitation, Expense, ExpenseSplit, Settlement, Notification


class MembershipInline(admin.TabularInline):
    model = Membership
    extra = 0


class ExpenseSplitInline(admin.TabularInline):
    model = ExpenseSplit
    extra = 0
    readonly_fields = ['is_settled', 'settled_at', 'created_at']


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ['name', 'currency', 'created_by', 'created_at']
    search_fields = ['name']
    inlines = [MembershipInline]


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'display_name']


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ['invitee_email', 'group', 'inviter', 'status', 'created_at', 'expires_at']
    list_filter = ['status']
    search_fields = ['invitee_email', 'group__name']
    exclude = ['token']


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ['description', 'amount', 'payer', 'group', 'category', 'created_at']
    list_filter = ['group', 'category']
    search_fields = ['description']
    inlines = [ExpenseSplitInline]


@admin.register(ExpenseSplit)
class ExpenseSplitAdmin(admin.ModelAdmin):
    list_display = ['expense', 'user', 'amount', 'is_settled', 'settled_at']
    list_filter = ['is_settled', 'expense__group']
    search_fields = ['expense__description', 'user__username']
    readonly_fields = ['is_settled', 'settled_at']


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = ['group', 'payer', 'receiver', 'amount', 'settled_at']
    list_filter = ['group']

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'type', 'title', 'is_read', 'created_at']
    list_filter = ['type', 'is_read']
