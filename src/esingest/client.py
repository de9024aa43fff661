"""
esingest Client — Elasticsearch Connections
===========================================

Builds the Elasticsearch client the transport sends through.

    client = build_client(
        hosts=["http://localhost:9200"],
        headers={"my-header": "my-value"},
        request_timeout=70,
    )
"""

from typing import Any, Dict, List, Mapping, Optional

from elasticsearch import Elasticsearch


DEFAULT_HOSTS = ["http://localhost:9200"]


def connection_kwargs(
    hosts: Optional[List[str]] = None,
    api_key: Optional[str] = None,
    basic_auth: Optional[tuple] = None,
    verify_certs: bool = True,
    headers: Optional[Mapping[str, str]] = None,
    request_timeout: Optional[float] = None,
    max_retries: Optional[int] = None
) -> Dict[str, Any]:
    """
    Keyword arguments for `Elasticsearch(...)`.

    Args:
        hosts: List of ES node URLs (default: ["http://localhost:9200"])
        api_key: API key for authentication (preferred over basic_auth)
        basic_auth: Tuple of (username, password)
        verify_certs: Verify SSL certificates
        headers: Default headers sent with every request
        request_timeout: Per-request timeout in seconds
        max_retries: Client-level retries on connection errors
    """
    conn_kwargs: Dict[str, Any] = {
        "hosts": hosts or DEFAULT_HOSTS,
        "verify_certs": verify_certs
    }

    if api_key:
        conn_kwargs["api_key"] = api_key
    elif basic_auth:
        conn_kwargs["basic_auth"] = basic_auth

    if headers:
        conn_kwargs["headers"] = dict(headers)
    if request_timeout is not None:
        conn_kwargs["request_timeout"] = request_timeout
    if max_retries is not None:
        conn_kwargs["max_retries"] = max_retries

    return conn_kwargs


def build_client(**kwargs: Any) -> Elasticsearch:
    """Create an Elasticsearch client; see connection_kwargs for arguments."""
    return Elasticsearch(**connection_kwargs(**kwargs))


def cluster_health(client: Elasticsearch) -> dict:
    """Cluster health as a plain dict."""
    response = client.cluster.health()
    return dict(getattr(response, "body", response))
