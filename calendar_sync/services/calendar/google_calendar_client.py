# calendar_sync/services/calendar/google_calendar_client.py
"""Thin Google Calendar v3 REST client. Stateless apart from the HTTP session."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import CalendarInfo, EventDraft, ExternalEvent, WatchChannel
from calendar_sync.services.calendar.exceptions import (
    CalendarAPIError,
    CalendarConflictError,
    CalendarTransientError,
)

settings = get_settings()

logger = logging.getLogger(__name__)


def parse_rfc3339(value: str) -> datetime:
    """Parse a Google dateTime; values without an offset are taken as UTC"""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarClient:
    BASE_URL = "https://www.googleapis.com/calendar/v3"
    MAX_RESULTS = 2500
    GONE_STATUSES = (404, 410)

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or settings.GOOGLE_HTTP_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, access_token: str, **kwargs) -> requests.Response:
        headers = {"Authorization": f"Bearer {access_token}"}
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        try:
            return self.session.request(
                method,
                f"{self.BASE_URL}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise CalendarTransientError(f"{method} {path} timed out") from exc
        except requests.RequestException as exc:
            raise CalendarTransientError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _check(response: requests.Response, action: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        message = f"Failed to {action}: {status} {response.text[:500]}"
        if status == 429 or status >= 500:
            raise CalendarTransientError(message, status_code=status)
        if status == 409:
            raise CalendarConflictError(message, status_code=status)
        raise CalendarAPIError(message, status_code=status)

    def _paginate(self, path: str, access_token: str, params: Dict[str, Any], action: str) -> List[Dict]:
        items: List[Dict] = []
        page_token = None
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            response = self._request("GET", path, access_token, params=page_params)
            self._check(response, action)
            data = response.json()
            items.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return items

    # ------------------------------------------------------------------
    # Calendars and events
    # ------------------------------------------------------------------

    def list_calendars(self, access_token: str) -> List[CalendarInfo]:
        items = self._paginate("/users/me/calendarList", access_token, {}, "list calendars")
        return [
            CalendarInfo(
                id=cal["id"],
                display_name=cal.get("summaryOverride") or cal.get("summary") or cal["id"],
                is_primary=bool(cal.get("primary", False)),
                time_zone=cal.get("timeZone"),
            )
            for cal in items
        ]

    def list_events(
            self,
            access_token: str,
            calendar_id: str,
            window_start: datetime,
            window_end: datetime,
    ) -> List[ExternalEvent]:
        """Timed, non-cancelled events overlapping the window, recurring ones expanded"""
        params = {
            "timeMin": to_rfc3339(window_start),
            "timeMax": to_rfc3339(window_end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(self.MAX_RESULTS),
        }
        items = self._paginate(
            f"/calendars/{quote(calendar_id, safe='')}/events", access_token, params, "list events"
        )

        events = []
        for item in items:
            if item.get("status") == "cancelled":
                continue
            start = item.get("start", {})
            end = item.get("end", {})
            # All-day events only carry "date"
            if not start.get("dateTime") or not end.get("dateTime"):
                continue
            events.append(ExternalEvent(
                id=item["id"],
                title=item.get("summary") or "(No title)",
                start=parse_rfc3339(start["dateTime"]),
                end=parse_rfc3339(end["dateTime"]),
                time_zone=start.get("timeZone"),
            ))
        return events

    @staticmethod
    def _event_from_response(data: Dict[str, Any], draft: EventDraft) -> ExternalEvent:
        start = data.get("start", {})
        end = data.get("end", {})
        return ExternalEvent(
            id=data["id"],
            title=data.get("summary") or draft.summary,
            start=parse_rfc3339(start["dateTime"]) if start.get("dateTime") else draft.start,
            end=parse_rfc3339(end["dateTime"]) if end.get("dateTime") else draft.end,
            time_zone=start.get("timeZone") or draft.time_zone,
        )

    def create_event(self, access_token: str, calendar_id: str, draft: EventDraft) -> ExternalEvent:
        response = self._request(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            access_token,
            json=draft.to_google_body(),
        )
        self._check(response, "create event")
        return self._event_from_response(response.json(), draft)

    def get_event_status(self, access_token: str, calendar_id: str, event_id: str) -> Optional[str]:
        """Event status ("confirmed", "tentative", "cancelled"), None when the event is gone"""
        response = self._request(
            "GET",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            access_token,
        )
        if response.status_code in self.GONE_STATUSES:
            return None
        self._check(response, "get event")
        return response.json().get("status")

    def restore_event(self, access_token: str, calendar_id: str, draft: EventDraft) -> ExternalEvent:
        """Overwrite a deleted (cancelled) event that still holds the draft's id"""
        body = draft.to_google_body()
        body["status"] = "confirmed"
        response = self._request(
            "PUT",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(draft.event_id, safe='')}",
            access_token,
            json=body,
        )
        self._check(response, "restore event")
        return self._event_from_response(response.json(), draft)

    def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        response = self._request(
            "DELETE",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            access_token,
        )
        # Already deleted is fine
        if response.status_code in self.GONE_STATUSES:
            logger.info(f"Event {event_id} already gone ({response.status_code})")
            return
        self._check(response, "delete event")

    # ------------------------------------------------------------------
    # Push notification channels
    # ------------------------------------------------------------------

    def register_webhook(
            self,
            access_token: str,
            calendar_id: str,
            channel_id: str,
            callback_url: str,
            ttl: Optional[int] = None,
            channel_token: Optional[str] = None,
    ) -> WatchChannel:
        body: Dict[str, Any] = {
            "id": channel_id,
            "type": "web_hook",
            "address": callback_url,
        }
        if ttl:
            body["params"] = {"ttl": str(int(ttl))}
        if channel_token:
            body["token"] = channel_token

        response = self._request(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events/watch",
            access_token,
            json=body,
        )
        self._check(response, "watch calendar")
        data = response.json()

        expiration = data.get("expiration")
        return WatchChannel(
            channel_id=data.get("id", channel_id),
            resource_id=data["resourceId"],
            expires_at=(
                datetime.fromtimestamp(int(expiration) / 1000, tz=timezone.utc) if expiration else None
            ),
        )

    def deregister_webhook(self, access_token: str, channel_id: str, resource_id: str) -> None:
        """Stop a channel. Never raises; the channel may have expired already."""
        try:
            response = self._request(
                "POST",
                "/channels/stop",
                access_token,
                json={"id": channel_id, "resourceId": resource_id},
            )
        except CalendarTransientError as exc:
            logger.warning(f"Stop watching channel {channel_id} failed: {exc}")
            return

        if response.status_code >= 300 and response.status_code not in self.GONE_STATUSES:
            logger.warning(f"Stop watching channel {channel_id} returned {response.status_code}")
