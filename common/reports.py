from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.cache import cache
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from common.mixins import branch_ids_for_user
from common.permissions import RoleCapabilityPermission
from core.models import Branch


class BaseReportView(APIView):
    """Read-only aggregate endpoint scoped to the caller's branches.

    Query params shared by every report: `branch_id` (superusers may pick any
    branch, everyone else only their own), `timezone` (IANA name, defaults to
    the branch's), `date_from`/`date_to` (inclusive, both or neither) and
    `limit` where a report ranks rows. Payloads are cached per branch scope
    and full URL for `REPORT_CACHE_SECONDS`.
    """

    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    @property
    def cache_timeout(self):
        return settings.REPORT_CACHE_SECONDS

    def _branch_ids(self, request):
        allowed = branch_ids_for_user(request.user)
        requested = request.query_params.get("branch_id")
        if not requested:
            return allowed
        if requested not in {str(branch_id) for branch_id in allowed}:
            raise ValidationError({"branch_id": "You can only query your own branch."})
        return [requested]

    def _tz_name(self, request, branch_ids):
        tz_name = request.query_params.get("timezone")
        if tz_name:
            return tz_name
        if len(branch_ids) == 1:
            branch = Branch.objects.filter(id=branch_ids[0]).only("timezone").first()
            if branch:
                return branch.timezone
        return "UTC"

    def _parse_timezone(self, tz_name):
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": "Invalid IANA timezone."})

    def _parse_limit(self, request, default=10, minimum=1, maximum=1000):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default
        try:
            limit = int(raw_limit)
        except ValueError:
            limit = None
        if limit is None or not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})
        return limit

    def _parse_day(self, request, name):
        raw = request.query_params.get(name)
        if not raw:
            return None
        try:
            day = parse_date(raw)
        except ValueError:
            day = None
        if day is None:
            raise ValidationError({"date_range": f"{name} must be a valid YYYY-MM-DD date."})
        return day

    def _date_range(self, request, tz):
        """Return aware datetimes spanning whole days, or (None, None) when unbounded."""
        date_from = self._parse_day(request, "date_from")
        date_to = self._parse_day(request, "date_to")
        if date_from is None and date_to is None:
            return None, None
        if date_from is None or date_to is None:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        return (
            datetime.combine(date_from, time.min).replace(tzinfo=tz),
            datetime.combine(date_to, time.max).replace(tzinfo=tz),
        )

    def _cached(self, request, key, branch_ids, callback):
        scope = ",".join(sorted(str(branch_id) for branch_id in branch_ids))
        cache_key = f"reports:{key}:{scope}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload
