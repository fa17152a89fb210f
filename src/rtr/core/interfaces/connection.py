# rtr/core/interfaces/connection.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class ToolingConnectionPort(ABC):
    """Authenticated connection to the platform's tooling API.

    Query methods return the raw page dict (`totalSize`, `done`, `records`,
    `nextRecordsUrl`); pagination is driven by the caller.
    """

    @property
    @abstractmethod
    def instance_url(self) -> str:
        """Base url of the org, without trailing slash"""
        pass

    @property
    @abstractmethod
    def access_token(self) -> Optional[str]:
        """Current bearer credential, None when the connection has none"""
        pass

    @property
    def username(self) -> Optional[str]:
        return None

    @property
    def org_id(self) -> Optional[str]:
        return None

    @abstractmethod
    async def query(self, soql: str) -> Dict[str, Any]:
        """Run a query and return its first page."""
        pass

    @abstractmethod
    async def query_more(self, next_records_url: str) -> Dict[str, Any]:
        """Fetch the page addressed by a continuation cursor."""
        pass

    @abstractmethod
    async def update(self, sobject_type: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Update records one by one.

        Returns one result dict per record with keys 'id', 'success' and
        'errors'. Individual failures do not undo earlier updates.
        """
        pass

    @abstractmethod
    async def create(self, sobject_type: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record and return the platform's result dict."""
        pass

    @abstractmethod
    async def request(self, method: str, path: str, body: Any = None) -> Any:
        """Issue a raw request against a tooling path and return the parsed body."""
        pass

    @abstractmethod
    async def refresh_auth(self) -> None:
        """Re-derive a live credential so `access_token` is current."""
        pass
