"""
GTM container model.

Wraps a parsed container export (the JSON downloaded from Tag Manager)
and precomputes everything the analysis and generation passes need:
flat entity lists, id/name indexes, the variable reference graph,
usage maps, content signatures, duplicate groups and unused sets.

The wrapped document is never modified.
"""

import json
from collections import defaultdict, namedtuple
from typing import Dict, List, Set

import networkx as nx
from loguru import logger

from gtm_exceptions import InvalidContainerError
from gtm_utils import (
    as_list,
    compact_json,
    entity_name,
    extract_variable_references,
    group_by,
    is_built_in,
    rolling_hash,
    to_base36,
)

# Trigger id GTM uses for the implicit "All Pages" trigger
ALL_PAGES_TRIGGER_ID = '2147479553'

ReferenceEdge = namedtuple('ReferenceEdge', ['source_kind', 'source_id', 'source_name', 'variable_name'])

TRIGGER_FILTER_FIELDS = ('filter', 'autoEventFilter', 'customEventFilter')


class GTMContainer:
    def __init__(self, gtm_data: dict, include_paused_tags: bool = True, source: str = None):
        self.validate_structure(gtm_data, source)

        self.gtm_data = gtm_data
        self.source = source
        self.include_paused_tags = include_paused_tags
        self.container_version = gtm_data['containerVersion']

        self.tags = self._entities('tag')
        if not include_paused_tags:
            self.tags = [tag for tag in self.tags if not tag.get('paused')]
        self.triggers = self._entities('trigger')
        self.variables = self._entities('variable')
        self.folders = self._entities('folder')
        self.templates = self._entities('customTemplate')
        self.clients = self._entities('client')
        self.zones = self._entities('zone')
        self.built_in_variables = self._entities('builtInVariable')

        # Indexes
        self.tags_by_id = {str(t.get('tagId')): t for t in self.tags if t.get('tagId') is not None}
        self.triggers_by_id = {str(t.get('triggerId')): t for t in self.triggers if t.get('triggerId') is not None}
        self.variables_by_name = {
            v['name']: v for v in self.variables if isinstance(v.get('name'), str) and v['name']
        }
        self.folders_by_id = {str(f.get('folderId')): f for f in self.folders if f.get('folderId') is not None}

        self.container_info = self._build_container_info()

        # Reference extraction runs once; everything below reads its output
        self.reference_edges = self._extract_reference_edges()
        self.reference_graph = self._build_reference_graph()
        self.variable_usage = self._build_variable_usage()
        self.trigger_usage = self._build_trigger_usage()

        logger.debug(
            f"Loaded container '{self.container_info['name']}': {len(self.tags)} tags, "
            f"{len(self.triggers)} triggers, {len(self.variables)} variables, "
            f"{len(self.reference_edges)} variable references"
        )

    # ------------------------------------------------------------------
    # Loading and validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_structure(gtm_data, source: str = None):
        """Reject documents that are not a container export at all."""
        if not isinstance(gtm_data, dict):
            raise InvalidContainerError('document root must be a JSON object', source)
        if 'containerVersion' not in gtm_data:
            raise InvalidContainerError("missing 'containerVersion'", source)
        if not isinstance(gtm_data['containerVersion'], dict):
            raise InvalidContainerError("'containerVersion' must be an object", source)

    @classmethod
    def from_json(cls, text: str, include_paused_tags: bool = True, source: str = None) -> 'GTMContainer':
        try:
            gtm_data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidContainerError(f'not valid JSON ({e})', source) from e
        return cls(gtm_data, include_paused_tags=include_paused_tags, source=source)

    @classmethod
    def load(cls, file_path: str, include_paused_tags: bool = True) -> 'GTMContainer':
        with open(file_path, 'r', encoding='utf-8') as f:
            text = f.read()
        return cls.from_json(text, include_paused_tags=include_paused_tags, source=file_path)

    def _entities(self, key: str) -> List[Dict]:
        """Entities of one kind, skipping malformed entries and live-only ones"""
        return [
            entity for entity in as_list(self.container_version.get(key))
            if isinstance(entity, dict) and not entity.get('liveOnly')
        ]

    def _build_container_info(self) -> Dict:
        container = self.container_version.get('container')
        if not isinstance(container, dict):
            container = {}
        return {
            'name': container.get('name') or 'GTM Container',
            'publicId': container.get('publicId', ''),
            'containerId': container.get('containerId', self.container_version.get('containerId', '')),
            'accountId': container.get('accountId', self.container_version.get('accountId', '')),
            'usageContext': as_list(container.get('usageContext')),
            'containerVersionId': self.container_version.get('containerVersionId', ''),
            'exportTime': self.gtm_data.get('exportTime', ''),
            'counts': {
                'tags': len(self.tags),
                'triggers': len(self.triggers),
                'variables': len(self.variables),
                'folders': len(self.folders),
                'templates': len(self.templates),
                'clients': len(self.clients),
                'builtInVariables': len(self.built_in_variables)
            }
        }

    # ------------------------------------------------------------------
    # Reference extraction
    # ------------------------------------------------------------------

    def get_variable_references_in_object(self, obj) -> List[str]:
        """
        Variable names referenced from template-typed values anywhere in a
        parameter tree (lists, maps, filters and formatValue included).
        Order of first appearance is kept, duplicates are dropped.
        """
        references = []
        self._collect_references(obj, references)
        seen = set()
        ordered = []
        for name in references:
            if name not in seen:
                seen.add(name)
                ordered.append(name)
        return ordered

    def _collect_references(self, obj, references: List[str]):
        if isinstance(obj, list):
            for item in obj:
                self._collect_references(item, references)
        elif isinstance(obj, dict):
            param_type = obj.get('type')
            if isinstance(param_type, str) and param_type.lower() == 'template':
                references.extend(extract_variable_references(obj.get('value')))
            for value in obj.values():
                if isinstance(value, (list, dict)):
                    self._collect_references(value, references)

    def _entity_reference_roots(self, kind: str, entity: Dict) -> list:
        roots = [entity.get('parameter')]
        if kind == 'trigger':
            roots.extend(entity.get(field) for field in TRIGGER_FILTER_FIELDS)
        elif kind == 'variable':
            roots.append(entity.get('formatValue'))
        return roots

    def _extract_reference_edges(self) -> List[ReferenceEdge]:
        edges = []
        sources = [
            ('tag', 'tagId', self.tags),
            ('trigger', 'triggerId', self.triggers),
            ('variable', 'variableId', self.variables),
            ('client', 'clientId', self.clients),
        ]
        for kind, id_field, entities in sources:
            for entity in entities:
                roots = self._entity_reference_roots(kind, entity)
                for name in self.get_variable_references_in_object(roots):
                    edges.append(ReferenceEdge(kind, str(entity.get(id_field, '')), entity_name(entity), name))
        return edges

    def _build_reference_graph(self) -> nx.DiGraph:
        """Variable -> referenced variable graph, self references included"""
        graph = nx.DiGraph()
        for variable in self.variables:
            if isinstance(variable.get('name'), str) and variable['name']:
                graph.add_node(variable['name'], variable_type=variable.get('type', ''))
        for edge in self.reference_edges:
            if edge.source_kind == 'variable' and edge.source_name:
                graph.add_edge(edge.source_name, edge.variable_name)
        return graph

    def _build_variable_usage(self) -> Dict[str, List[Dict]]:
        usage = defaultdict(list)
        for edge in self.reference_edges:
            # A variable mentioning itself does not keep it alive
            if edge.source_kind == 'variable' and edge.source_name == edge.variable_name:
                continue
            usage[edge.variable_name].append({
                'kind': edge.source_kind,
                'id': edge.source_id,
                'name': edge.source_name
            })
        return dict(usage)

    def _build_trigger_usage(self) -> Dict[str, List[str]]:
        usage = defaultdict(list)
        for tag in self.tags:
            for trigger_id in as_list(tag.get('firingTriggerId')) + as_list(tag.get('blockingTriggerId')):
                usage[str(trigger_id)].append(entity_name(tag))
        # Trigger groups reference their member triggers
        for trigger in self.triggers:
            for trigger_id in self._trigger_references(trigger.get('parameter')):
                usage[trigger_id].append(entity_name(trigger))
        return dict(usage)

    def _trigger_references(self, obj) -> List[str]:
        found = []
        if isinstance(obj, list):
            for item in obj:
                found.extend(self._trigger_references(item))
        elif isinstance(obj, dict):
            if obj.get('type') in ('triggerReference', 'TRIGGER_REFERENCE') and obj.get('value') is not None:
                found.append(str(obj['value']))
            for value in obj.values():
                if isinstance(value, (list, dict)):
                    found.extend(self._trigger_references(value))
        return found

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_tag_by_id(self, tag_id) -> Dict:
        return self.tags_by_id.get(str(tag_id))

    def get_trigger_by_id(self, trigger_id) -> Dict:
        return self.triggers_by_id.get(str(trigger_id))

    def get_variable_by_name(self, name: str) -> Dict:
        return self.variables_by_name.get(name)

    def get_folder_by_id(self, folder_id) -> Dict:
        return self.folders_by_id.get(str(folder_id))

    def get_variable_references(self, var_name: str) -> List[str]:
        """Names a variable references directly, in extraction order"""
        if var_name not in self.reference_graph:
            return []
        return list(self.reference_graph.successors(var_name))

    def get_references_for(self, kind: str, entity_name: str) -> List[str]:
        return [
            edge.variable_name for edge in self.reference_edges
            if edge.source_kind == kind and edge.source_name == entity_name
        ]

    # ------------------------------------------------------------------
    # Signatures and duplicates
    # ------------------------------------------------------------------

    @staticmethod
    def _signature(parts: list) -> str:
        text = '|'.join(compact_json(part) for part in parts)
        return 'sig_' + to_base36(rolling_hash(text))

    def get_tag_signature(self, tag: Dict) -> str:
        return self._signature([
            tag.get('type'),
            tag.get('parameter'),
            tag.get('firingTriggerId'),
            tag.get('blockingTriggerId'),
        ])

    def get_trigger_signature(self, trigger: Dict) -> str:
        return self._signature([trigger.get('type'), trigger.get('parameter')] +
                               [trigger.get(field) for field in TRIGGER_FILTER_FIELDS])

    def get_variable_signature(self, variable: Dict) -> str:
        return self._signature([
            variable.get('type'),
            variable.get('parameter'),
            variable.get('enforceSafeRules'),
        ])

    def find_duplicates(self) -> Dict[str, List[Dict]]:
        """Groups of entities sharing a content signature, first-seen order"""
        duplicates = {}
        for kind, entities, signature in (
            ('tags', self.tags, self.get_tag_signature),
            ('triggers', self.triggers, self.get_trigger_signature),
            ('variables', self.variables, self.get_variable_signature),
        ):
            groups = group_by(entities, signature)
            duplicates[kind] = [
                {'signature': sig, 'items': items}
                for sig, items in groups.items() if len(items) > 1
            ]
        return duplicates

    # ------------------------------------------------------------------
    # Unused entities
    # ------------------------------------------------------------------

    def find_unused_tags(self) -> List[Dict]:
        """Tags without a firing trigger that exists in the container"""
        unused = []
        for tag in self.tags:
            firing = [str(t) for t in as_list(tag.get('firingTriggerId'))]
            valid = [t for t in firing if t == ALL_PAGES_TRIGGER_ID or t in self.triggers_by_id]
            if not valid:
                unused.append(tag)
        return unused

    def find_unused_triggers(self) -> List[Dict]:
        unused = []
        for trigger in self.triggers:
            trigger_id = str(trigger.get('triggerId', ''))
            if trigger_id == ALL_PAGES_TRIGGER_ID or trigger.get('builtIn') or is_built_in(trigger):
                continue
            if not self.trigger_usage.get(trigger_id):
                unused.append(trigger)
        return unused

    def find_unused_variables(self) -> List[Dict]:
        unused = []
        for variable in self.variables:
            if is_built_in(variable):
                continue
            if not self.variable_usage.get(entity_name(variable)):
                unused.append(variable)
        return unused

    def find_unused_folders(self) -> List[Dict]:
        used = set()
        for entity in self.tags + self.triggers + self.variables + self.clients:
            if entity.get('parentFolderId') is not None:
                used.add(str(entity['parentFolderId']))
        return [f for f in self.folders if str(f.get('folderId')) not in used]

    def get_template_type_ids(self, template: Dict) -> Set[str]:
        """Entity type codes under which a custom template can be used"""
        type_ids = {f"cvt_{template.get('containerId', '')}_{template.get('templateId', '')}"}
        gallery = template.get('galleryReference')
        if isinstance(gallery, dict) and gallery.get('galleryTemplateId'):
            type_ids.add(f"cvt_{gallery['galleryTemplateId']}")
        return type_ids

    def find_unused_templates(self) -> List[Dict]:
        used_types = {e['type'] for e in self.tags + self.variables + self.clients if isinstance(e.get('type'), str)}
        used_template_ids = {str(t['templateId']) for t in self.tags if t.get('templateId') is not None}
        unused = []
        for template in self.templates:
            if self.get_template_type_ids(template) & used_types:
                continue
            if str(template.get('templateId')) in used_template_ids:
                continue
            unused.append(template)
        return unused

    def find_unused(self) -> Dict[str, List[Dict]]:
        return {
            'tags': self.find_unused_tags(),
            'triggers': self.find_unused_triggers(),
            'variables': self.find_unused_variables(),
            'folders': self.find_unused_folders(),
            'templates': self.find_unused_templates()
        }
