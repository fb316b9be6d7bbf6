import requests
import logging
import os
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from decoder import decode_response
from errors import (
    DecodeError,
    HrefFormatError,
    NotConnectedError,
    NotFoundError,
    XoApiError,
    XoConnectionError,
    XoError,
)
from query import (
    API_PREFIX,
    DEFAULT_LIMIT,
    ResourceQuery,
    assemble_query,
    build_href,
    href_collection,
    resolve_href,
)

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

AUTH_COOKIE = 'authenticationToken'
DEFAULT_TIMEOUT = 30
DEFAULT_WAIT_TIMEOUT = 3600


# Config validation
class XoConfig(BaseModel):
    endpoint: str
    verify_ssl: bool = True
    timeout: int = DEFAULT_TIMEOUT
    wait_timeout: int = DEFAULT_WAIT_TIMEOUT
    default_limit: int = Field(default=DEFAULT_LIMIT, ge=0)
    token_path: Optional[str] = None


def normalize_endpoint(endpoint):
    """Strip surrounding whitespace and trailing separators from an endpoint URL."""
    if not endpoint or not endpoint.strip():
        raise ValueError("endpoint is required")
    return endpoint.strip().rstrip('/')


class XoSession:
    def __init__(self, endpoint, token, verify_ssl=True, timeout=DEFAULT_TIMEOUT,
                 wait_timeout=DEFAULT_WAIT_TIMEOUT, default_limit=DEFAULT_LIMIT, token_path=None):
        """
        Hold the connection state for one Xen Orchestra endpoint.

        Use connect() rather than creating a session directly; connect()
        also checks that the endpoint is reachable.

        :param endpoint: Xen Orchestra URL (e.g., 'https://xo.example')
        :param token: Authentication token, sent as the authenticationToken cookie
        :param verify_ssl: Whether to verify TLS certificates
        :param timeout: Per-request timeout in seconds
        :param wait_timeout: Timeout in seconds for long-poll task waits
        :param default_limit: Result limit used when a query gives none (0 = unlimited)
        :param token_path: File the token was loaded from, if any
        """
        if not token:
            raise ValueError("token is required")
        self.endpoint = normalize_endpoint(endpoint)
        self._token = token
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.wait_timeout = wait_timeout
        self.token_path = token_path
        self._default_limit = DEFAULT_LIMIT
        self.set_default_limit(default_limit)
        self.session = requests.Session()
        self.session.cookies.set(AUTH_COOKIE, token)
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })

    def __repr__(self):
        state = self.endpoint if self.connected else 'disconnected'
        return f"<XoSession {state}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    @property
    def connected(self):
        return self.endpoint is not None and self._token is not None

    def require_connected(self):
        if not self.connected:
            raise NotConnectedError()

    def get_default_limit(self) -> int:
        return self._default_limit

    def set_default_limit(self, limit: int):
        """
        Set the limit used by later queries that do not pass one.

        :param limit: Number of results, 0 for unlimited
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValueError(f"Invalid default limit '{limit}': must be an integer >= 0")
        self._default_limit = limit

    def disconnect(self, clear_stored_credential=False):
        """
        Forget the endpoint and credential. Safe to call more than once.

        :param clear_stored_credential: Also delete the token file this session was loaded from
        """
        if self.connected:
            logger.info(f"Disconnected from {self.endpoint}")
        if self.session is not None:
            self.session.close()
        self.endpoint = None
        self._token = None
        self._default_limit = DEFAULT_LIMIT
        if clear_stored_credential and self.token_path:
            if os.path.exists(self.token_path):
                os.remove(self.token_path)
                logger.info(f"Removed stored credential {self.token_path}")
            self.token_path = None

    def url(self, path):
        return f"{self.endpoint}{API_PREFIX}{path}"

    def _send(self, method, path, timeout=None, **kwargs) -> requests.Response:
        """
        Perform one HTTP request against the REST API.

        :param method: HTTP method name ('get', 'post', 'patch')
        :param path: Path below /rest/v0 (e.g., '/vms/<uuid>')
        :param timeout: Override of the per-request timeout
        :return: The requests Response (status already checked)
        """
        self.require_connected()
        url = self.url(path)
        logger.debug(f"{method.upper()} {url} {kwargs.get('params') or ''}")
        try:
            resp = getattr(self.session, method)(
                url, verify=self.verify_ssl, timeout=timeout or self.timeout, **kwargs)
            resp.raise_for_status()
            return resp
        except requests.exceptions.Timeout as e:
            raise XoApiError(f"Request to {path} timed out") from e
        except requests.exceptions.SSLError as e:
            raise XoApiError("SSL verification failed") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            raise XoApiError(f"HTTP {status}: {e.response.text}", status_code=status,
                             body=e.response.text) from e
        except requests.exceptions.RequestException as e:
            raise XoApiError(f"Request failed: {e}") from e

    def _get(self, path, params=None, timeout=None):
        return self._send('get', path, params=params, timeout=timeout)

    def _post(self, path, data=None):
        return self._send('post', path, json=data)

    def _patch(self, path, data=None):
        return self._send('patch', path, json=data)


def connect(endpoint, token, verify_ssl=True, **options) -> XoSession:
    """
    Open a session and check it by listing one task.

    :param endpoint: Xen Orchestra URL
    :param token: Authentication token
    :param verify_ssl: Whether to verify TLS certificates
    :param options: Other XoSession options (timeout, wait_timeout, default_limit, token_path)
    :return: Connected XoSession
    :raises XoConnectionError: If that first request fails
    """
    session = XoSession(endpoint, token, verify_ssl=verify_ssl, **options)
    try:
        resp = session._get('/tasks', params={'fields': 'id', 'limit': '1'})
        # An HTML login page or any other non-collection body means the session is unusable.
        classify_collection(decode_response(resp))
    except (XoError, requests.exceptions.RequestException) as e:
        target = session.endpoint
        session.disconnect()
        logger.error(f"Connection to {target} failed: {e}")
        raise XoConnectionError(f"Unable to connect to {target}: {e}") from e
    logger.info(f"Connected to {session.endpoint}")
    return session


# Collection response shapes
class InlineRecords(NamedTuple):
    records: List[Dict[str, Any]]


class ReferenceLinks(NamedTuple):
    hrefs: List[str]


class FetchFailure(NamedTuple):
    href: str
    error: Exception


def classify_collection(decoded):
    """
    Decide once whether a collection response holds full objects or references.

    :param decoded: Decoded response body
    :return: InlineRecords or ReferenceLinks
    """
    if decoded is None:
        return InlineRecords([])
    if not isinstance(decoded, list):
        raise XoApiError(f"Expected a JSON array from collection query, got {type(decoded).__name__}")
    if all(isinstance(item, dict) for item in decoded):
        return InlineRecords(decoded)
    if all(isinstance(item, str) for item in decoded):
        return ReferenceLinks(decoded)
    raise XoApiError("Collection response mixes objects and references")


def _fields_param(fields):
    return {'fields': ','.join(fields)} if fields else None


def fetch_one(session: XoSession, collection, identifier, fields=None) -> Dict[str, Any]:
    """
    Fetch a single resource.

    :param session: Connected XoSession
    :param collection: Collection name (e.g., 'vms')
    :param identifier: Resource identifier
    :param fields: Optional list of field names
    :return: Raw resource record
    :raises NotFoundError: If the server returns an empty body or 404
    """
    session.require_connected()
    path = f'/{collection}/{identifier}'
    try:
        resp = session._get(path, params=_fields_param(fields))
    except XoApiError as e:
        if e.status_code == 404:
            raise NotFoundError(collection, identifier) from e
        raise
    record = decode_response(resp)
    if not record:
        raise NotFoundError(collection, identifier)
    if not isinstance(record, dict):
        raise XoApiError(f"Expected a JSON object for {path}, got {type(record).__name__}")
    return record


fetch_single = fetch_one


class ResourceStream:
    """
    Single-pass iterator over the raw records of a collection query.

    Nothing is requested until the first record is asked for. Records that
    cannot be fetched are logged and kept in ``errors`` instead of stopping
    the iteration.
    """

    def __init__(self, session: XoSession, collection, query: ResourceQuery):
        self.session = session
        self.collection = collection
        self.query = query
        self.errors: List[FetchFailure] = []
        self._records = self._generate()

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return self

    def __next__(self) -> Dict[str, Any]:
        return next(self._records)

    def _generate(self):
        resp = self.session._get(f'/{self.collection}', params=self.query.to_params())
        shape = classify_collection(decode_response(resp))
        limit = self.query.limit
        if isinstance(shape, InlineRecords):
            records = shape.records[:limit] if limit else shape.records
            logger.debug(f"{self.collection}: {len(records)} inline records")
            for record in records:
                yield record
            return
        hrefs = shape.hrefs[:limit] if limit else shape.hrefs
        logger.debug(f"{self.collection}: resolving {len(hrefs)} references")
        for href in hrefs:
            try:
                record = fetch_one(self.session, href_collection(href), resolve_href(href),
                                   self.query.fields)
            except (HrefFormatError, NotFoundError, DecodeError, XoApiError) as e:
                logger.warning(f"Skipping {href}: {e}")
                self.errors.append(FetchFailure(href, e))
                continue
            yield record


def fetch_many(session: XoSession, collection, query: ResourceQuery) -> ResourceStream:
    session.require_connected()
    return ResourceStream(session, collection, query)


def query_resources(session: XoSession, collection, fields, clauses=None, limit=None) -> ResourceStream:
    """
    Query a collection.

    :param session: Connected XoSession
    :param collection: Collection name
    :param fields: Field names to request
    :param clauses: Optional list of FilterClause
    :param limit: Result limit, 0 for all, None for the session default
    :return: ResourceStream of raw records
    """
    session.require_connected()
    resource_query = assemble_query(fields, clauses, limit, session.get_default_limit())
    return fetch_many(session, collection, resource_query)


def _task_href(resp):
    try:
        body = decode_response(resp)
    except DecodeError:
        body = resp.text.strip() or None
    if isinstance(body, dict):
        if body.get('href'):
            body = body['href']
        elif body.get('taskId'):
            body = build_href('tasks', body['taskId'])
    if isinstance(body, str) and body:
        return body
    location = resp.headers.get('Location')
    if location:
        return location
    raise XoApiError("Action response did not contain a task reference", body=resp.text)


def invoke_action(session: XoSession, collection, identifier, verb, body=None) -> str:
    """
    Invoke an action on a resource.

    :param session: Connected XoSession
    :param collection: Collection name (e.g., 'vms')
    :param identifier: Resource identifier
    :param verb: Action name (e.g., 'start', 'clean_shutdown')
    :param body: Optional JSON body
    :return: Task reference (href)
    """
    session.require_connected()
    path = f'/{collection}/{identifier}/actions/{verb}'
    try:
        href = _task_href(session._post(path, body))
    except XoError as e:
        logger.error(f"Failed to invoke '{verb}' on {collection}/{identifier}: {e}")
        raise
    logger.info(f"Action '{verb}' on {collection}/{identifier} initiated, task: {href}")
    return href


def update_resource(session: XoSession, collection, identifier, changes: Dict[str, Any]):
    """
    Partially update a resource.

    :param session: Connected XoSession
    :param collection: Collection name
    :param identifier: Resource identifier
    :param changes: Field values to change
    :return: Decoded response body, if any
    """
    session.require_connected()
    if not changes:
        raise ValueError("No changes given")
    path = f'/{collection}/{identifier}'
    try:
        result = decode_response(session._patch(path, changes))
    except XoError as e:
        logger.error(f"Failed to update {collection}/{identifier}: {e}")
        raise
    logger.info(f"Updated {collection}/{identifier}: {', '.join(changes)}")
    return result


# Utility function to open a session from config
def load_session(config_path=None) -> XoSession:
    project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if config_path is None:
        config_path = os.getenv('XO_CONFIG', os.path.join(project_dir, 'secrets', 'config.xo.yaml'))

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    try:
        config = XoConfig(**raw_config.get('xo', {}))
    except ValidationError as e:
        raise ValueError(f"Invalid config: {e}")

    token_path = config.token_path or os.path.join(os.path.dirname(config_path), 'xo-token.txt')
    with open(token_path, 'r') as f:
        token = f.read().strip()

    return connect(
        config.endpoint,
        token,
        verify_ssl=config.verify_ssl,
        timeout=config.timeout,
        wait_timeout=config.wait_timeout,
        default_limit=config.default_limit,
        token_path=token_path,
    )
