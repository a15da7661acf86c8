# unwind_sync/unwind_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any, List
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from unwind_sync.Constants import API_PROFILE_PATH, DEFAULT_LIST_LIMIT, DEFAULT_LIST_PAGE
from unwind_sync.DB.entity_descriptors import EntityDescriptor, JOURNAL, MISTAKES, OVERTHINKING, TODOS
from .auth import TokenProvider
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from .schemas import CreatedRecordResponse, ServerRecord, UserProfile
#
########################################################################################################################
#
# Functions:

def extract_error_message(response_data: Any, status_code: Optional[int]) -> str:
    """
    Picks the human-readable message for a failed call: the body's ``error``
    field, then its ``message`` field, then a generic fallback.
    """
    if isinstance(response_data, dict):
        for key in ("error", "message"):
            value = response_data.get(key)
            if value:
                return str(value)
    if status_code:
        return f"Request failed with {status_code}"
    return "Network request failed"


class UnwindAPIClient:
    def __init__(self, base_url: str, token_provider: Optional[TokenProvider] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.token_provider = token_provider
        # None keeps httpx's own default timeout
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            kwargs: Dict[str, Any] = {
                "base_url": self.base_url,
                "headers": {"Content-Type": "application/json"},
                "follow_redirects": True,
            }
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def get_token(self, id_token: Optional[str] = None) -> Optional[str]:
        if id_token:
            return id_token
        if self.token_provider is None:
            return None
        return await self.token_provider.get_token()

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        id_token: Optional[str] = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        headers = {}
        token = await self.get_token(id_token)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await client.request(method, endpoint, json=json_body, params=params, headers=headers)
            response.raise_for_status()  # Raises HTTPStatusError for 4xx/5xx
        except httpx.HTTPStatusError as e:
            response_data = None
            try:
                response_data = e.response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                response_data = {"raw_text": e.response.text}
            status = e.response.status_code
            message = extract_error_message(response_data, status)
            logger.debug(f"{method} {endpoint} failed with {status}: {message}")
            if status in (401, 403):
                raise AuthenticationError(status, message, response_data=response_data) from e
            raise APIResponseError(status, message, response_data=response_data) from e
        except httpx.RequestError as e:  # Covers ConnectError, TimeoutException, etc.
            logger.debug(f"Connection error to {url}: {e!r}")
            raise APIConnectionError(str(e) or "Network request failed") from e
        except TypeError as e:
            raise APIRequestError(f"Could not encode request body for {method} {endpoint}: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except json.JSONDecodeError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text})

    # --- Generic record endpoints ---
    @staticmethod
    def _extract_records(descriptor: EntityDescriptor, data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in (descriptor.list_response_key, "items", "data"):
                value = data.get(key)
                if isinstance(value, list):
                    return value
        logger.warning(f"Unexpected list response shape for {descriptor.kind}: {type(data).__name__}")
        return []

    async def list_records(self, descriptor: EntityDescriptor, date: Optional[str] = None,
                           category: Optional[str] = None, page: int = DEFAULT_LIST_PAGE,
                           limit: int = DEFAULT_LIST_LIMIT, id_token: Optional[str] = None) -> List[ServerRecord]:
        params: Dict[str, Any] = {}
        if date:
            params["date"] = date
        if category:
            params["category"] = category
        if page:
            params["page"] = str(page)
        if limit:
            params["limit"] = str(limit)
        data = await self._request("GET", descriptor.api_path, params=params, id_token=id_token)
        records = []
        for raw in self._extract_records(descriptor, data):
            try:
                records.append(ServerRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {descriptor.kind} record from server: {e.errors()[:1]}")
        return records

    async def create_record(self, descriptor: EntityDescriptor, body: Dict[str, Any],
                            id_token: Optional[str] = None) -> CreatedRecordResponse:
        data = await self._request("POST", descriptor.api_path, json_body=body, id_token=id_token)
        try:
            return CreatedRecordResponse.model_validate(data)
        except ValidationError as e:
            raise APIResponseError(200, f"Create {descriptor.kind} response has no identifier",
                                   response_data=data if isinstance(data, dict) else {"raw": data}) from e

    async def update_record(self, descriptor: EntityDescriptor, server_id: str, body: Dict[str, Any],
                            id_token: Optional[str] = None) -> Dict[str, Any]:
        if not descriptor.supports_update:
            raise APIRequestError(f"The {descriptor.kind} endpoint does not support updates.")
        return await self._request("PUT", f"{descriptor.api_path}/{server_id}", json_body=body, id_token=id_token)

    async def delete_record(self, descriptor: EntityDescriptor, server_id: str,
                            id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("DELETE", f"{descriptor.api_path}/{server_id}", id_token=id_token)

    # --- Journal ---
    async def list_journal_entries(self, date: Optional[str] = None, page: int = DEFAULT_LIST_PAGE,
                                   limit: int = DEFAULT_LIST_LIMIT, id_token: Optional[str] = None) -> List[ServerRecord]:
        return await self.list_records(JOURNAL, date=date, page=page, limit=limit, id_token=id_token)

    async def create_journal_entry(self, content: str, date: str, id_token: Optional[str] = None,
                                   **extra: Any) -> CreatedRecordResponse:
        return await self.create_record(JOURNAL, {"content": content, "date": date, **extra}, id_token=id_token)

    async def delete_journal_entry(self, server_id: str, id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self.delete_record(JOURNAL, server_id, id_token=id_token)

    # --- Overthinking ---
    async def list_overthinking_entries(self, date: Optional[str] = None, page: int = DEFAULT_LIST_PAGE,
                                        limit: int = DEFAULT_LIST_LIMIT, id_token: Optional[str] = None) -> List[ServerRecord]:
        return await self.list_records(OVERTHINKING, date=date, page=page, limit=limit, id_token=id_token)

    async def create_overthinking_entry(self, thought: str, date: str, solution: Optional[str] = None,
                                        id_token: Optional[str] = None) -> CreatedRecordResponse:
        body = {"thought": thought, "solution": solution, "date": date}
        return await self.create_record(OVERTHINKING, body, id_token=id_token)

    async def delete_overthinking_entry(self, server_id: str, id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self.delete_record(OVERTHINKING, server_id, id_token=id_token)

    # --- Mistakes ---
    async def list_mistakes_entries(self, date: Optional[str] = None, page: int = DEFAULT_LIST_PAGE,
                                    limit: int = DEFAULT_LIST_LIMIT, id_token: Optional[str] = None) -> List[ServerRecord]:
        return await self.list_records(MISTAKES, date=date, page=page, limit=limit, id_token=id_token)

    async def create_mistake_entry(self, mistake: str, solution: str, category: str, date: str,
                                   id_token: Optional[str] = None) -> CreatedRecordResponse:
        body = {"mistake": mistake, "solution": solution, "category": category, "date": date}
        return await self.create_record(MISTAKES, body, id_token=id_token)

    async def delete_mistake_entry(self, server_id: str, id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self.delete_record(MISTAKES, server_id, id_token=id_token)

    # --- Todos ---
    async def list_todos(self, category: Optional[str] = None, page: int = DEFAULT_LIST_PAGE,
                         limit: int = DEFAULT_LIST_LIMIT, id_token: Optional[str] = None) -> List[ServerRecord]:
        return await self.list_records(TODOS, category=category, page=page, limit=limit, id_token=id_token)

    async def create_todo(self, title: str, category: str, description: Optional[str] = None,
                          priority: Optional[str] = None, due_date: Optional[str] = None,
                          id_token: Optional[str] = None) -> CreatedRecordResponse:
        body = {"title": title, "description": description, "category": category,
                "priority": priority, "dueDate": due_date}
        return await self.create_record(TODOS, body, id_token=id_token)

    async def update_todo(self, server_id: str, body: Dict[str, Any],
                          id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self.update_record(TODOS, server_id, body, id_token=id_token)

    async def delete_todo(self, server_id: str, id_token: Optional[str] = None) -> Dict[str, Any]:
        return await self.delete_record(TODOS, server_id, id_token=id_token)

    # --- Account ---
    async def get_profile(self, id_token: Optional[str] = None) -> UserProfile:
        data = await self._request("GET", API_PROFILE_PATH, id_token=id_token)
        user = data.get("user", data) if isinstance(data, dict) else {}
        return UserProfile.model_validate(user or {})

#
# End of client.py
########################################################################################################################
