"""
Per-resource wrappers around the query and action helpers.

Records are returned as raw dictionaries keyed by the server's field names.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from client import XoSession, fetch_one, invoke_action, query_resources, update_resource
from query import all_of, any_of, contains, equals, scoped
from tasks import Task, list_tasks, poll, start_from_reference, wait

logger = logging.getLogger(__name__)

# Validation regexes
UUID_REGEX = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
NAME_REGEX = re.compile(r'^\S(.*\S)?$')  # names: no leading/trailing whitespace

POWER_STATES = ('Running', 'Halted', 'Suspended', 'Paused')


def validate_uuid(uuid):
    """Validate a resource UUID"""
    if not UUID_REGEX.match(str(uuid)):
        raise ValueError(f"Invalid UUID '{uuid}'")


def validate_name(name):
    if not name or not NAME_REGEX.match(name):
        raise ValueError(f"Invalid name '{name}': must not be empty or start/end with whitespace")


def validate_power_states(power_states):
    for state in power_states:
        if state not in POWER_STATES:
            raise ValueError(f"Invalid power state '{state}': must be one of {', '.join(POWER_STATES)}")


class Resource:
    """
    Base wrapper for one collection.
    """
    collection = None
    default_fields = ['uuid', 'name_label', 'name_description', 'tags']

    def __init__(self, session: XoSession):
        self.session = session

    def clauses(self, name=None, tags=None, all_tags=None, pool=None):
        if pool:
            validate_uuid(pool)
        return [
            contains('name_label', name),
            any_of('tags', tags),
            all_of('tags', all_tags),
            scoped('$pool', pool),
        ]

    def list(self, name=None, tags=None, all_tags=None, pool=None, fields=None, limit=None) -> List[Dict[str, Any]]:
        """
        List resources of this collection.

        :param name: Only names containing this text
        :param tags: Only resources with any of these tags
        :param all_tags: Only resources with all of these tags
        :param pool: Only resources in this pool (UUID)
        :param fields: Fields to request, defaults to default_fields
        :param limit: Result limit, 0 for all, None for the session default
        :return: List of raw records
        """
        return self._query(self.clauses(name=name, tags=tags, all_tags=all_tags, pool=pool), fields, limit)

    def _query(self, clauses, fields=None, limit=None):
        stream = query_resources(self.session, self.collection, fields or self.default_fields, clauses, limit)
        records = list(stream)
        if stream.errors:
            logger.warning(f"{len(stream.errors)} {self.collection} could not be retrieved")
        logger.info(f"Retrieved {len(records)} {self.collection}")
        return records

    def get(self, uuid, fields=None) -> Dict[str, Any]:
        validate_uuid(uuid)
        return fetch_one(self.session, self.collection, uuid, fields or self.default_fields)

    def update(self, uuid, **changes):
        validate_uuid(uuid)
        return update_resource(self.session, self.collection, uuid, changes)

    def _action(self, uuid, verb, body=None, wait_for_task=False):
        validate_uuid(uuid)
        href = invoke_action(self.session, self.collection, uuid, verb, body)
        if not wait_for_task:
            return href
        task = start_from_reference(self.session, href)
        if task.is_terminal:
            return task
        return task.advance(wait(self.session, [task])[0])


class VM(Resource):
    """
    Wrapper class for VM operations.
    """
    collection = 'vms'
    default_fields = ['uuid', 'name_label', 'name_description', 'power_state', 'tags',
                      '$pool', '$container', 'CPUs', 'memory']

    def list(self, name=None, tags=None, all_tags=None, pool=None, host=None, power_states=None,
             fields=None, limit=None):
        if host:
            validate_uuid(host)
        if power_states:
            validate_power_states(power_states)
        clauses = self.clauses(name=name, tags=tags, all_tags=all_tags, pool=pool)
        clauses += [scoped('$container', host), any_of('power_state', power_states)]
        return self._query(clauses, fields, limit)

    def start(self, uuid, wait=False):
        return self._action(uuid, 'start', wait_for_task=wait)

    def clean_shutdown(self, uuid, wait=False):
        return self._action(uuid, 'clean_shutdown', wait_for_task=wait)

    def hard_shutdown(self, uuid, wait=False):
        return self._action(uuid, 'hard_shutdown', wait_for_task=wait)

    def clean_reboot(self, uuid, wait=False):
        return self._action(uuid, 'clean_reboot', wait_for_task=wait)

    def hard_reboot(self, uuid, wait=False):
        return self._action(uuid, 'hard_reboot', wait_for_task=wait)

    def snapshot(self, uuid, name=None, wait=False):
        body = None
        if name is not None:
            validate_name(name)
            body = {'name_label': name}
        return self._action(uuid, 'snapshot', body, wait_for_task=wait)


class Host(Resource):
    collection = 'hosts'
    default_fields = ['uuid', 'name_label', 'name_description', 'power_state', 'tags',
                      '$pool', 'address', 'productBrand', 'version']


class Pool(Resource):
    collection = 'pools'
    default_fields = ['uuid', 'name_label', 'name_description', 'tags', 'master']

    def clauses(self, name=None, tags=None, all_tags=None, pool=None):
        # Pools are not scoped to a parent pool.
        if pool:
            validate_uuid(pool)
        return [
            contains('name_label', name),
            any_of('tags', tags),
            all_of('tags', all_tags),
            equals('uuid', pool),
        ]


class SR(Resource):
    collection = 'srs'
    default_fields = ['uuid', 'name_label', 'name_description', 'tags', '$pool', 'SR_type',
                      'size', 'physical_usage', 'content_type']


class VDI(Resource):
    collection = 'vdis'
    default_fields = ['uuid', 'name_label', 'name_description', 'tags', '$pool', '$SR', 'size', 'usage']

    def list(self, name=None, tags=None, all_tags=None, pool=None, sr=None, fields=None, limit=None):
        if sr:
            validate_uuid(sr)
        clauses = self.clauses(name=name, tags=tags, all_tags=all_tags, pool=pool) + [scoped('$SR', sr)]
        return self._query(clauses, fields, limit)


class Network(Resource):
    collection = 'networks'
    default_fields = ['uuid', 'name_label', 'name_description', 'tags', '$pool', 'bridge', 'MTU']


class VMSnapshot(Resource):
    collection = 'vm-snapshots'
    default_fields = ['uuid', 'name_label', 'name_description', 'tags', '$pool',
                      '$snapshot_of', 'snapshot_time']


class VMTemplate(Resource):
    collection = 'vm-templates'


class Tasks:
    """
    Wrapper class for Task operations.
    """
    def __init__(self, session: XoSession):
        self.session = session

    def get(self, task) -> Task:
        return poll(self.session, task)

    def wait(self, tasks, return_snapshots=True) -> Optional[List[Task]]:
        return wait(self.session, tasks, return_snapshots)

    def list(self, status=None, limit=None) -> List[Task]:
        return list_tasks(self.session, status, limit)
