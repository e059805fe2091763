# accounts/users/views.py
from django.contrib.auth import get_user_model
from django.db.models import Q
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from rest_framework.viewsets import ReadOnlyModelViewSet

from accounts.models import UserRole
from MessagingApp.presence import get_router
from .serializers import UserListSerializer, UserSuggestSerializer

User = get_user_model()

TRUTHY = ("1", "true", "yes")


class UserPagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


def filter_people(qs, params, me):
    if params.get("exclude_me", "").lower() in TRUTHY:
        qs = qs.exclude(id=me.id)

    role = (params.get("role") or "").upper()
    if role and role != "ALL" and role in UserRole.values:
        qs = qs.filter(role=role)

    q = (params.get("q") or "").strip()
    if q:
        qs = qs.filter(
            Q(email__icontains=q)
            | Q(first_name__icontains=q)
            | Q(last_name__icontains=q)
            | Q(display_name__icontains=q)
        )
    return qs


class UserViewSet(ReadOnlyModelViewSet):
    """
    GET /api/users/                -> paginated list
    GET /api/users/?q=text         -> search
    GET /api/users/?role=EXPERT    -> filter by role
    GET /api/users/?exclude_me=1   -> leave out request.user
    GET /api/users/suggest/?q=ju   -> suggestions with presence (not paginated)
    """
    permission_classes = [IsAuthenticated]
    serializer_class = UserListSerializer
    pagination_class = UserPagination

    def get_queryset(self):
        qs = User.objects.filter(is_active=True).order_by("first_name", "last_name", "email")
        return filter_people(qs, self.request.query_params, self.request.user)

    @action(detail=False, methods=["GET"], url_path="suggest")
    def suggest(self, request):
        try:
            limit = int(request.query_params.get("limit") or 10)
        except ValueError:
            limit = 10

        qs = filter_people(User.objects.filter(is_active=True), request.query_params, request.user)
        qs = qs.order_by("-last_seen", "first_name", "last_name")[: max(1, min(limit, 50))]

        users = list(qs)
        online_ids = {str(uid) for uid in get_router().online_user_ids([u.id for u in users])}
        data = UserSuggestSerializer(users, many=True, context={"online_ids": online_ids}).data
        return Response(data)
