"""Google Drive and Sheets HTTP calls used by the sync flow.

Every call is attempted once. A failed request raises ``UpstreamError``
with the upstream status and body, which are logged but never returned
to the browser.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from ..errors import PartialSyncError, UpstreamError

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_FILES_ENDPOINT = "/files"
SHEETS_API_BASE = "https://sheets.googleapis.com/v4"
GOOGLE_SHEETS_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
SPREADSHEET_LIST_LIMIT = 50


def spreadsheet_url(spreadsheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"


class GoogleSheetsClient:
    def __init__(self, *, timeout: float = 10.0) -> None:
        self._timeout = timeout

    async def _send(
        self,
        access_token: str,
        *,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, base_url=base_url) as client:
            return await client.request(
                method,
                path,
                params=params,
                json=json_data,
                headers=headers,
            )

    async def _request(
        self,
        access_token: str,
        *,
        action: str,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await self._send(
            access_token,
            method=method,
            base_url=base_url,
            path=path,
            params=params,
            json_data=json_data,
        )

        if response.is_error:
            logger.error("Google request failed: %s %s -> %s %s", method, path, response.status_code, response.text)
            raise UpstreamError(action, status=response.status_code, body=response.text)

        payload = response.json() if response.text else {}
        if not isinstance(payload, dict):
            logger.error("Unexpected Google response type for %s %s", method, path)
            raise UpstreamError(action, status=response.status_code, body="unexpected response type")
        return payload

    async def list_spreadsheets(self, access_token: str) -> List[Dict[str, Any]]:
        params = {
            "q": f"mimeType='{GOOGLE_SHEETS_MIME_TYPE}' and trashed=false",
            "fields": "files(id,name,modifiedTime)",
            "orderBy": "modifiedTime desc",
            "pageSize": SPREADSHEET_LIST_LIMIT,
        }
        data = await self._request(
            access_token,
            action="list spreadsheets",
            method="GET",
            base_url=DRIVE_API_BASE,
            path=DRIVE_FILES_ENDPOINT,
            params=params,
        )

        sheets: List[Dict[str, Any]] = []
        for entry in data.get("files") or []:
            if not isinstance(entry, dict) or "id" not in entry:
                continue
            summary = {"id": entry["id"], "name": entry.get("name", "")}
            if entry.get("modifiedTime"):
                summary["modifiedTime"] = entry["modifiedTime"]
            sheets.append(summary)
        return sheets

    async def create_spreadsheet(self, access_token: str, title: str) -> Dict[str, str]:
        data = await self._request(
            access_token,
            action="create spreadsheet",
            method="POST",
            base_url=SHEETS_API_BASE,
            path="/spreadsheets",
            json_data={"properties": {"title": title}},
        )

        spreadsheet_id = data.get("spreadsheetId")
        if not isinstance(spreadsheet_id, str) or not spreadsheet_id:
            logger.error("Google Sheets create response missing spreadsheetId")
            raise UpstreamError("create spreadsheet", body="missing spreadsheetId")

        properties = data.get("properties") or {}
        return {
            "id": spreadsheet_id,
            "name": properties.get("title", title),
            "url": spreadsheet_url(spreadsheet_id),
        }

    async def overwrite_tab(
        self,
        access_token: str,
        spreadsheet_id: str,
        tab_name: str,
        grid: Sequence[Sequence[str]],
    ) -> None:
        """Clear ``tab_name`` and write ``grid`` from A1 with RAW values.

        The two calls are not atomic: if the write fails the tab stays cleared.
        """

        values_path = f"/spreadsheets/{quote(spreadsheet_id, safe='')}/values"

        clear_response = await self._send(
            access_token,
            method="POST",
            base_url=SHEETS_API_BASE,
            path=f"{values_path}/{quote(tab_name, safe='')}:clear",
        )
        if clear_response.is_error:
            logger.error(
                "Failed to clear sheet %s/%s: %s %s",
                spreadsheet_id,
                tab_name,
                clear_response.status_code,
                clear_response.text,
            )
            raise PartialSyncError("clear", status=clear_response.status_code, body=clear_response.text)

        update_response = await self._send(
            access_token,
            method="PUT",
            base_url=SHEETS_API_BASE,
            path=f"{values_path}/{quote(f'{tab_name}!A1', safe='')}",
            params={"valueInputOption": "RAW"},
            json_data={"values": [list(row) for row in grid]},
        )
        if update_response.is_error:
            logger.error(
                "Failed to update sheet %s/%s after clearing it: %s %s",
                spreadsheet_id,
                tab_name,
                update_response.status_code,
                update_response.text,
            )
            raise PartialSyncError("write", status=update_response.status_code, body=update_response.text)
