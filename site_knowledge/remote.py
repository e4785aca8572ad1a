"""HTTP client for the remote (PocketBase) record store."""

import logging
from typing import Any

import httpx

from site_knowledge.models import CONTENT_FIELDS, RemoteRecord
from site_knowledge.utils import parse_timestamp

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Base class for remote store failures."""

    pass


class RemoteUnreachableError(RemoteError):
    """Raised when the remote store cannot be contacted."""

    pass


class RemoteAuthError(RemoteError):
    """Raised when the remote store rejects the supplied credentials."""

    pass


class RemoteRequestError(RemoteError):
    """Raised when the remote store answers with an error status."""

    def __init__(self, message: str, status_code: int, data: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.data = data


class RemoteStoreClient:
    """Thin typed client for the remote question collection.

    Records are listed, created and updated through the PocketBase REST API.
    Deletion is soft: the record's tombstone flag is set so the removal can
    propagate to other installations.
    """

    COLLECTION = "questions"
    AUTH_COLLECTION = "users"
    DEFAULT_TIMEOUT = 15.0
    PAGE_SIZE = 500

    # Local field name -> remote field name
    FIELD_MAP = {
        "site_name": "siteName",
        "category": "tag",
        "subcategory": "subtag",
        "question": "question",
        "answer": "answer",
        "additional_info": "additionalInfo",
        "approved": "approved",
        "is_deleted": "isDeleted",
    }

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        collection: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root URL of the remote store (e.g. http://host:8090).
            timeout: Per-request timeout in seconds.
                Defaults to DEFAULT_TIMEOUT.
            collection: Name of the record collection.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.collection = collection or self.COLLECTION
        self._token: str | None = None
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else self.DEFAULT_TIMEOUT,
            transport=transport,
        )

    @property
    def is_authenticated(self) -> bool:
        """Whether an auth token is held."""
        return self._token is not None

    @property
    def _records_path(self) -> str:
        return f"/api/collections/{self.collection}/records"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON response.

        Raises:
            RemoteUnreachableError: On transport failures, timeouts and
                successful answers that are not JSON (e.g. a captive portal).
            RemoteRequestError: On any non-2xx response.
        """
        headers = {"Authorization": self._token} if self._token else None
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise RemoteUnreachableError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            try:
                data = response.json()
            except ValueError:
                data = response.text
            message = data.get("message") if isinstance(data, dict) else None
            raise RemoteRequestError(
                f"{method} {path} returned {response.status_code}: "
                f"{message or response.reason_phrase}",
                status_code=response.status_code,
                data=data,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteUnreachableError(
                f"{method} {path} did not answer with JSON; "
                f"is {self.base_url} a record store?"
            ) from e

    def _to_wire(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Rename local field names to remote ones, dropping unknown fields."""
        return {
            self.FIELD_MAP[name]: value
            for name, value in fields.items()
            if name in self.FIELD_MAP
        }

    def _from_wire(self, item: dict[str, Any]) -> RemoteRecord:
        """Build a RemoteRecord from a remote JSON item."""
        values = {
            name: item.get(self.FIELD_MAP[name]) or "" for name in CONTENT_FIELDS
        }
        return RemoteRecord(
            id=item["id"],
            approved=bool(item.get("approved")),
            is_deleted=bool(item.get("isDeleted")),
            updated_at=parse_timestamp(item.get("updated")),
            created_at=parse_timestamp(item.get("created")),
            **values,
        )

    def probe(self) -> None:
        """Check that the remote store answers.

        A 401/403 answer still proves the server is up; the caller is
        expected to log in before reading.

        Raises:
            RemoteUnreachableError: If the server cannot be contacted or
                answers with a server error.
            RemoteRequestError: On other client errors (e.g. unknown collection).
        """
        try:
            self._request("GET", self._records_path, params={"page": 1, "perPage": 1})
        except RemoteRequestError as e:
            if e.status_code in (401, 403):
                logger.debug("Probe answered %s; remote requires auth", e.status_code)
                return
            if e.status_code >= 500:
                raise RemoteUnreachableError(str(e)) from e
            raise

    def login(self, identity: str, password: str) -> dict[str, Any]:
        """Authenticate with a password account.

        Args:
            identity: Username or email.
            password: Account password.

        Returns:
            The authenticated account record.

        Raises:
            RemoteAuthError: If the credentials are rejected.
            RemoteUnreachableError: If the server cannot be contacted.
        """
        try:
            data = self._request(
                "POST",
                f"/api/collections/{self.AUTH_COLLECTION}/auth-with-password",
                json={"identity": identity, "password": password},
            )
        except RemoteRequestError as e:
            raise RemoteAuthError(f"Login failed for {identity}: {e}") from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise RemoteAuthError(f"Login for {identity} returned no token")
        self._token = token
        return data.get("record") or {}

    def logout(self) -> None:
        """Forget the auth token."""
        self._token = None

    def list_all(self, include_deleted: bool = True) -> list[RemoteRecord]:
        """Fetch every record, oldest modification first.

        Args:
            include_deleted: Whether tombstoned records are included.

        Returns:
            List of remote records.
        """
        params: dict[str, Any] = {"perPage": self.PAGE_SIZE, "sort": "+updated"}
        if not include_deleted:
            params["filter"] = "isDeleted = false"

        records: list[RemoteRecord] = []
        page = 1
        while True:
            data = self._request(
                "GET", self._records_path, params={**params, "page": page}
            ) or {}
            if not isinstance(data, dict):
                raise RemoteRequestError(
                    f"GET {self._records_path} returned an unexpected body",
                    status_code=200,
                    data=data,
                )
            items = data.get("items") or []
            records.extend(self._from_wire(item) for item in items)
            total_pages = data.get("totalPages") or 0
            if not items or page >= total_pages:
                break
            page += 1

        logger.debug("Listed %d remote record(s)", len(records))
        return records

    def create(self, fields: dict[str, Any]) -> RemoteRecord:
        """Create a record.

        Args:
            fields: Local field names and values.

        Returns:
            The created record with its server-assigned id.
        """
        data = self._request("POST", self._records_path, json=self._to_wire(fields))
        return self._from_wire(data)

    def update(self, remote_id: str, fields: dict[str, Any]) -> RemoteRecord:
        """Update a record.

        Args:
            remote_id: Remote record id.
            fields: Local field names and values to write.

        Returns:
            The updated record.
        """
        data = self._request(
            "PATCH", f"{self._records_path}/{remote_id}", json=self._to_wire(fields)
        )
        return self._from_wire(data)

    def soft_delete(self, remote_id: str) -> None:
        """Mark a record as deleted without removing it."""
        self._request(
            "PATCH",
            f"{self._records_path}/{remote_id}",
            json=self._to_wire({"is_deleted": True}),
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._client.close()

    def __enter__(self) -> "RemoteStoreClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
