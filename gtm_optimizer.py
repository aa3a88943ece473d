"""
GTM container optimizer.

Ties the container model, rules engine, readiness analysis and the
server-side generator together behind one object, the way the CLI and
the report writers use them.
"""

import re
from datetime import datetime
from typing import Dict, List

from loguru import logger

from gtm_container import GTMContainer
from gtm_rules import GTMRulesEngine, RulesConfig
from gtm_ssg_generator import GTMServerSideGenerator
from gtm_ssg_prep import GTMServerSidePrep
from gtm_template_catalog import TemplateCatalog
from gtm_utils import as_list, deep_clone

RECOMMENDATION_RULES = [
    # (score key, threshold, priority, category, title, description, estimated impact)
    ('performance', 70, 'high', 'performance', 'Improve container performance',
     'The performance score is low. Remove unneeded tags and simplify triggers.', 'High'),
    ('cleanup', 70, 'high', 'cleanup', 'Clean up the container',
     'Many elements are unused or duplicated and should be removed.', 'Medium'),
    ('privacy', 70, 'critical', 'privacy', 'Improve privacy compliance',
     'Consent management is missing or personal data is not handled correctly.', 'Critical'),
    ('ssgReadiness', 60, 'medium', 'migration', 'Prepare for server-side GTM',
     'The container is not well prepared for a migration to server-side GTM.', 'Medium'),
]

ENTITY_KEYS = {
    'tags': ('tag', 'tagId'),
    'triggers': ('trigger', 'triggerId'),
    'variables': ('variable', 'variableId'),
}


class GTMOptimizer:
    def __init__(self, container: GTMContainer, config: RulesConfig = None):
        self.container = container
        self.config = config or RulesConfig()
        self.rules_engine = GTMRulesEngine(container, self.config)
        self.ssg_prep = GTMServerSidePrep(container)
        self.changes = []

    def analyze(self) -> Dict:
        """Rules engine output plus container facts and recommendations"""
        analysis = self.rules_engine.analyze()
        duplicates = self.container.find_duplicates()
        unused = self.container.find_unused()

        report = dict(analysis)
        report['containerInfo'] = self.container.container_info
        report['duplicates'] = {
            kind: [
                {'signature': group['signature'], 'names': [e.get('name', '') for e in group['items']]}
                for group in groups
            ]
            for kind, groups in duplicates.items()
        }
        report['unused'] = {kind: [e.get('name', '') for e in entities] for kind, entities in unused.items()}
        report['recommendations'] = self.generate_recommendations(analysis)
        report['generatedAt'] = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        return report

    @staticmethod
    def generate_recommendations(analysis: Dict) -> List[Dict]:
        scores = analysis.get('scores', {})
        recommendations = []
        for score_key, threshold, priority, category, title, description, impact in RECOMMENDATION_RULES:
            score = scores.get(score_key)
            if score is not None and score < threshold:
                recommendations.append({
                    'priority': priority,
                    'category': category,
                    'title': title,
                    'description': description,
                    'estimatedImpact': impact
                })
        return recommendations

    def prepare_ssg_migration(self) -> Dict:
        return self.ssg_prep.generate_migration_plan()

    def _generator(self, selected_vendors=None, catalog: TemplateCatalog = None, now: datetime = None,
                   transport_url: str = None) -> GTMServerSideGenerator:
        analysis = self.ssg_prep.analyze_container_for_ssg()
        return GTMServerSideGenerator(self.container, analysis, selected_vendors=selected_vendors,
                                      catalog=catalog, now=now, transport_url=transport_url)

    def generate_ssg_container(self, selected_vendors=None, catalog: TemplateCatalog = None,
                               now: datetime = None) -> Dict:
        return self._generator(selected_vendors, catalog, now).generate()

    def generate_ssg_export_bundle(self, selected_vendors=None, catalog: TemplateCatalog = None,
                                   now: datetime = None, transport_url: str = None) -> Dict:
        """Server container, patched client container and generation summary"""
        generator = self._generator(selected_vendors, catalog, now, transport_url)
        server_container = generator.generate()
        client_container = generator.generate_modified_client_container()
        summary = generator.get_summary()
        return {
            'serverContainer': server_container,
            'clientContainer': client_container,
            'summary': summary
        }

    # ------------------------------------------------------------------
    # Optimized container
    # ------------------------------------------------------------------

    def _record(self, change_type: str, entity_type: str, entity: Dict, reason: str):
        self.changes.append({
            'type': change_type,
            'entityType': entity_type,
            'entityName': entity.get('name', ''),
            'reason': reason
        })

    def _remove_entities(self, version: Dict, key: str, id_field: str, ids: set, reason: str):
        kept = []
        for entity in as_list(version.get(key)):
            if isinstance(entity, dict) and str(entity.get(id_field)) in ids:
                self._record('delete', key, entity, reason)
                continue
            kept.append(entity)
        if key in version:
            version[key] = kept

    def _remove_unused(self, version: Dict):
        for kind, entities in (('tags', self.container.find_unused_tags()),
                               ('triggers', self.container.find_unused_triggers()),
                               ('variables', self.container.find_unused_variables())):
            key, id_field = ENTITY_KEYS[kind]
            ids = {str(e.get(id_field)) for e in entities}
            self._remove_entities(version, key, id_field, ids, 'Unused')

    def _deduplicate(self, version: Dict):
        trigger_ids = {}
        variable_names = {}
        for kind, groups in self.container.find_duplicates().items():
            key, id_field = ENTITY_KEYS[kind]
            present = {str(e.get(id_field)) for e in as_list(version.get(key)) if isinstance(e, dict)}
            removed = set()
            for group in groups:
                items = [e for e in group['items'] if str(e.get(id_field)) in present]
                if len(items) < 2:
                    continue
                keep, *duplicates = items
                for duplicate in duplicates:
                    removed.add(str(duplicate.get(id_field)))
                    if kind == 'triggers':
                        trigger_ids[str(duplicate.get('triggerId'))] = str(keep.get('triggerId'))
                    elif kind == 'variables' and duplicate.get('name') and keep.get('name'):
                        variable_names[duplicate['name']] = keep['name']
            self._remove_entities(version, key, id_field, removed, 'Duplicate')

        for tag in as_list(version.get('tag')):
            for field in ('firingTriggerId', 'blockingTriggerId'):
                if isinstance(tag.get(field), list):
                    remapped = [trigger_ids.get(str(t), t) for t in tag[field]]
                    tag[field] = list(dict.fromkeys(remapped))

        if variable_names:
            pattern = re.compile(r'\{\{(' + '|'.join(re.escape(n) for n in variable_names) + r')\}\}')
            for key in ('tag', 'trigger', 'variable', 'client'):
                for entity in as_list(version.get(key)):
                    _rename_references(entity, pattern, variable_names)

    def generate_optimized_container(self, remove_unused: bool = True, deduplicate: bool = True,
                                     now: datetime = None) -> Dict:
        """Copy of the container with unused and duplicate tags, triggers and variables removed"""
        self.changes = []
        container = deep_clone(self.container.gtm_data)
        version = container['containerVersion']

        if remove_unused:
            self._remove_unused(version)
        if deduplicate:
            self._deduplicate(version)

        stamp = str(int((now or datetime.now()).timestamp() * 1000))
        current = version.get('containerVersionId')
        if isinstance(current, str) and re.search(r'\d+', current):
            version['containerVersionId'] = re.sub(r'\d+', stamp, current, count=1)
        else:
            version['containerVersionId'] = stamp
        version['fingerprint'] = stamp

        logger.info(f"Optimized container: {len(self.changes)} changes")
        return container

    def get_changes_summary(self) -> Dict:
        by_type = {key: {'delete': 0, 'modify': 0, 'create': 0} for key in ('tag', 'trigger', 'variable')}
        for change in self.changes:
            if change['entityType'] in by_type:
                by_type[change['entityType']][change['type']] += 1
        return {'total': len(self.changes), 'byType': by_type}

    def generate_comparison_report(self, optimized: Dict) -> Dict:
        original_counts = _entity_counts(self.container.gtm_data)
        optimized_counts = _entity_counts(optimized)
        return {
            'original': original_counts,
            'optimized': optimized_counts,
            'reductions': {
                key: original_counts[key] - optimized_counts[key]
                for key in ('tags', 'triggers', 'variables')
            }
        }


def _rename_references(obj, pattern, renames: Dict[str, str]):
    """Point {{old}} template references at the kept duplicate, in place"""
    if isinstance(obj, list):
        for item in obj:
            _rename_references(item, pattern, renames)
    elif isinstance(obj, dict):
        value = obj.get('value')
        if isinstance(obj.get('type'), str) and obj['type'].lower() == 'template' and isinstance(value, str):
            obj['value'] = pattern.sub(lambda m: '{{' + renames[m.group(1)] + '}}', value)
        for child in obj.values():
            if isinstance(child, (list, dict)):
                _rename_references(child, pattern, renames)


def _entity_counts(gtm_data: Dict) -> Dict[str, int]:
    version = gtm_data.get('containerVersion', {}) if isinstance(gtm_data, dict) else {}

    def live(key):
        return len([e for e in as_list(version.get(key)) if isinstance(e, dict) and not e.get('liveOnly')])

    return {
        'tags': live('tag'),
        'triggers': live('trigger'),
        'variables': live('variable'),
        'folders': len(as_list(version.get('folder'))),
        'templates': len(as_list(version.get('customTemplate')))
    }
