"""
GTM container rules engine.

Runs a fixed battery of checks over a GTMContainer and returns issues,
suggestions and a set of scores. Simple field predicates live in the
ENTITY_RULES and THRESHOLD_RULES tables; checks that need graph walks or
cross-entity state are methods on GTMRulesEngine.

Checks can be switched off through RulesConfig.disabled_checks. A number
of them ship disabled (DEFAULT_DISABLED_CHECKS) because they are too
noisy for most containers.
"""

import json
import re
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, List, Optional, Set, Union

from loguru import logger

from gtm_best_practices import check_best_practices
from gtm_container import ALL_PAGES_TRIGGER_ID, GTMContainer
from gtm_utils import (
    as_list,
    calculate_score,
    generate_unique_id,
    get_parameter,
    get_parameter_value,
    get_score_grade,
    is_built_in,
)

# Order in which checks run; issues are reported in this order
CHECKS = [
    # Unused elements
    'unused_tags',
    'unused_triggers',
    'unused_variables',
    'unused_folders',
    'unused_templates',
    # Duplicates
    'duplicate_tags',
    'duplicate_triggers',
    'duplicate_variables',
    # Naming
    'tag_naming',
    'trigger_naming',
    'variable_naming',
    # Structure
    'folder_usage',
    'tag_sequencing',
    'trigger_complexity',
    # Performance
    'heavy_tags',
    'tag_firing_order',
    'blocking_triggers',
    'variable_references',
    # Privacy and security
    'pii_in_variables',
    'data_layer_names',
    'custom_scripts',
    'permission_rules',
    # Best practices
    'preview_mode',
    'environment_settings',
    'built_in_variables_usage',
    'hardcoded_values',
    'missing_descriptions',
    # Google Analytics
    'ga4_configuration',
    'ga4_measurement_id',
    'ga4_event_parameters',
    'ga_tracking_delegation',
    # Marketing
    'marketing_tags_privacy',
    'consent_integration',
    'tag_timing',
    # Reference graph
    'circular_dependencies',
    'nested_references',
    'deprecated_features',
]

DEFAULT_DISABLED_CHECKS = frozenset([
    'tag_naming',
    'trigger_naming',
    'variable_naming',
    'folder_usage',
    'tag_sequencing',
    'trigger_complexity',
    'preview_mode',
    'environment_settings',
    'ga4_event_parameters',
    'ga_tracking_delegation',
    'tag_timing',
])

GA4_TAG_TYPES = ('gaawe', 'gawc')
MARKETING_TAG_TYPES = ('awct', 'adsct', 'flc', 'fls', 'ms', 'fbq', 'lnq', 'baut')
MARKETING_NAME_HINTS = ('facebook', 'linkedin', 'tiktok')
CONSENT_NAME_HINTS = ('consent', 'cookiebot', 'onetrust', 'one-trust')
PII_KEYWORDS = (
    'email', 'mail', 'e-mail',
    'phone', 'telephone', 'mobile',
    'name', 'firstname', 'lastname', 'fullname',
    'address', 'street', 'zip', 'postal',
    'ssn', 'social', 'creditcard', 'card',
)
PII_CAPTURING_VARIABLE_TYPES = ('jsm', 'd')
DEPRECATED_TAG_TYPES = {
    'ua': 'Universal Analytics (sunset July 2023)',
    'ga': 'Classic Analytics (sunset)',
    'utm': 'Legacy UTM tag',
    'tc': 'Legacy conversion linker',
}
RECOMMENDED_BUILT_IN_VARIABLES = ('url', 'pageUrl', 'pageTitle', 'referrer', 'event')
TAG_PREFIX_PATTERN = r'^([A-Z]{2,})\s*-\s*'
TAG_NAME_ALLOWED_PATTERN = r'[^\w\s\-()]'

# Score denominators per category
SCORE_DENOMINATORS = {
    'overall': 50,
    'cleanup': 20,
    'performance': 15,
    'structure': 15,
    'security': 10,
    'privacy': 10
}
SSG_CLIENT_HEAVY_TYPES = ('html', 'ua', 'awct', 'fbq')


@dataclass
class RulesConfig:
    """Which checks run and the limits the threshold checks use."""
    disabled_checks: Set[str] = field(default_factory=lambda: set(DEFAULT_DISABLED_CHECKS))
    max_all_pages_tags: int = 15
    max_blocking_trigger_tags: int = 5
    max_variable_references: int = 5
    max_reference_depth: int = 5
    max_hardcoded_id_tags: int = 5
    max_missing_description_ratio: float = 0.7
    max_early_event_tags: int = 5
    max_tags_without_event_parameters: int = 5
    max_tags_without_prefix: int = 5
    max_misnamed_page_view_triggers: int = 5

    def is_enabled(self, check: str) -> bool:
        return check not in self.disabled_checks

    def enable(self, *checks: str):
        self.disabled_checks.difference_update(checks)

    def disable(self, *checks: str):
        self.disabled_checks.update(checks)

    @classmethod
    def from_dict(cls, data: Dict) -> 'RulesConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known - {'enabled_checks'}
        if unknown:
            logger.warning(f"Ignoring unknown rules config keys: {', '.join(sorted(unknown))}")
        kwargs = {key: value for key, value in data.items() if key in known}
        if 'disabled_checks' in kwargs:
            kwargs['disabled_checks'] = set(kwargs['disabled_checks'])
        config = cls(**kwargs)
        config.enable(*data.get('enabled_checks', []))
        return config

    @classmethod
    def from_file(cls, file_path: str) -> 'RulesConfig':
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Rules config must contain a JSON object: {file_path}")
        return cls.from_dict(data)


@dataclass
class EntityRule:
    """
    One row of the per-entity rule table.

    ``predicate`` decides whether an entity matches. ``message`` is a
    format string filled with ``name``, ``type`` and whatever ``details``
    returns for the entity. Aggregate rows report a single issue for all
    matches, with ``count`` and ``names`` available to the message.
    """
    check: str
    kind: str
    predicate: Callable[[Dict], bool]
    severity: str
    category: str
    title: str
    message: str
    details: Optional[Callable[[Dict], Dict]] = None
    action: str = 'review'
    aggregate: bool = False


@dataclass
class ThresholdRule:
    """
    One row of the threshold suggestion table: fires when more than
    ``limit`` entities are selected. A string limit names a RulesConfig
    attribute.
    """
    check: str
    select: Callable[[GTMContainer, RulesConfig], List[Dict]]
    limit: Union[int, str]
    impact: str
    category: str
    title: str
    message: str


# ----------------------------------------------------------------------
# Entity predicates
# ----------------------------------------------------------------------

def _name(entity: Dict) -> str:
    name = entity.get('name')
    return name if isinstance(name, str) else ''


def _html(tag: Dict) -> str:
    if tag.get('type') != 'html':
        return ''
    html = get_parameter_value(tag, 'html', '')
    return html if isinstance(html, str) else ''


def blocking_html_reasons(tag: Dict) -> List[str]:
    html = _html(tag)
    reasons = []
    if 'document.write' in html:
        reasons.append('document.write')
    if 'async=false' in html:
        reasons.append('async=false')
    if '<script' in html and 'async' not in html:
        reasons.append('synchronous <script>')
    return reasons


def risky_script_reasons(tag: Dict) -> List[str]:
    html = _html(tag).lower()
    reasons = []
    if 'document.write' in html:
        reasons.append('document.write')
    if 'eval(' in html:
        reasons.append('eval()')
    if 'onerror=' in html or 'onload=' in html:
        reasons.append('inline event handler')
    return reasons


def captures_pii(variable: Dict) -> bool:
    if is_built_in(variable):
        return False
    name = _name(variable).lower()
    if not any(keyword in name for keyword in PII_KEYWORDS):
        return False
    return variable.get('type') in PII_CAPTURING_VARIABLE_TYPES


def is_marketing_tag(tag: Dict) -> bool:
    name = _name(tag).lower()
    return tag.get('type') in MARKETING_TAG_TYPES or any(hint in name for hint in MARKETING_NAME_HINTS)


def is_consent_tag(tag: Dict) -> bool:
    name = _name(tag).lower()
    return tag.get('type') == 'cmp' or any(hint in name for hint in CONSENT_NAME_HINTS)


def literal_parameter(tag: Dict, key: str) -> Optional[str]:
    """Parameter value when it is a hardcoded string rather than a {{reference}}"""
    value = get_parameter_value(tag, key)
    if isinstance(value, str) and value and '{{' not in value:
        return value
    return None


def fires_on_all_pages(tag: Dict) -> bool:
    return ALL_PAGES_TRIGGER_ID in [str(t) for t in as_list(tag.get('firingTriggerId'))]


ENTITY_RULES = [
    EntityRule(
        check='heavy_tags', kind='tag',
        predicate=lambda tag: tag.get('type') in ('ua', 'ga'),
        severity='high', category='performance',
        title='Heavy tag found',
        message='Tag "{name}" uses legacy {product} and loads its library on every page.',
        details=lambda tag: {'product': 'Universal Analytics' if tag.get('type') == 'ua' else 'Classic Analytics'},
    ),
    EntityRule(
        check='heavy_tags', kind='tag',
        predicate=lambda tag: bool(blocking_html_reasons(tag)),
        severity='medium', category='performance',
        title='Heavy tag found',
        message='Custom HTML tag "{name}" may block rendering: {reasons}.',
        details=lambda tag: {'reasons': ', '.join(blocking_html_reasons(tag))},
    ),
    EntityRule(
        check='custom_scripts', kind='tag',
        predicate=lambda tag: bool(risky_script_reasons(tag)),
        severity='high', category='security',
        title='Risky script found',
        message='Tag "{name}" uses {reasons}.',
        details=lambda tag: {'reasons': ', '.join(risky_script_reasons(tag))},
    ),
    EntityRule(
        check='deprecated_features', kind='tag',
        predicate=lambda tag: tag.get('type') in DEPRECATED_TAG_TYPES,
        severity='high', category='best-practice',
        title='Deprecated tag type',
        message='{label}: "{name}"',
        details=lambda tag: {'label': DEPRECATED_TAG_TYPES[tag['type']]},
        action='migrate',
    ),
    EntityRule(
        check='pii_in_variables', kind='variable',
        predicate=captures_pii,
        severity='high', category='privacy',
        title='Possible PII variables found',
        message='{count} variables may capture personally identifiable information: {names}.',
        aggregate=True,
    ),
    EntityRule(
        check='ga_tracking_delegation', kind='tag',
        predicate=lambda tag: tag.get('type') in ('ua', 'ga'),
        severity='critical', category='performance',
        title='Legacy Google Analytics tags',
        message='{count} legacy Google Analytics tags should be removed: {names}.',
        action='delete',
        aggregate=True,
    ),
]


def _tags_without_prefix(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [t for t in container.tags if not re.match(TAG_PREFIX_PATTERN, _name(t))]


def _tags_with_special_characters(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [t for t in container.tags if re.search(TAG_NAME_ALLOWED_PATTERN, _name(t))]


def _misnamed_page_view_triggers(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    misnamed = []
    for trigger in container.triggers:
        name = _name(trigger).lower()
        if trigger.get('type') == 'PAGE_VIEW' and 'page' not in name and 'seite' not in name:
            misnamed.append(trigger)
    return misnamed


def _variables_with_spaces(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [v for v in container.variables if not is_built_in(v) and ' ' in _name(v)]


def _complex_triggers(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    complex_triggers = []
    for trigger in container.triggers:
        conditions = len(as_list(trigger.get('filter'))) + len(as_list(trigger.get('condition')))
        if trigger.get('type') == 'CUSTOM_EVENT' and conditions > 5:
            complex_triggers.append(trigger)
        elif trigger.get('type') in ('CLICK', 'SUBMIT') and get_parameter(trigger, 'waitForTags') is not None:
            complex_triggers.append(trigger)
    return complex_triggers


def _all_pages_tags(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [t for t in container.tags if fires_on_all_pages(t)]


def _tags_with_blocking_triggers(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [t for t in container.tags if as_list(t.get('blockingTriggerId'))]


def _variables_with_many_references(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [
        v for v in container.variables
        if len(container.get_variable_references(_name(v))) > config.max_variable_references
    ]


def _tags_with_hardcoded_ids(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [
        t for t in container.tags
        if literal_parameter(t, 'measurementId') or literal_parameter(t, 'conversionId')
    ]


def _ga4_event_tags_without_parameters(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    bare = []
    for tag in container.tags:
        if tag.get('type') != 'gaawe':
            continue
        event_params = get_parameter(tag, 'eventParameters') or get_parameter(tag, 'eventSettingsTable')
        if event_params is None or not as_list(event_params.get('list')):
            bare.append(tag)
    return bare


def _early_event_tags(container: GTMContainer, config: RulesConfig) -> List[Dict]:
    return [t for t in container.tags if get_parameter(t, 'earlyEventParams') is not None]


THRESHOLD_RULES = [
    ThresholdRule(
        check='tag_naming', select=_tags_without_prefix, limit='max_tags_without_prefix',
        impact='medium', category='structure',
        title='Improve tag naming convention',
        message='{count} tags do not use a type prefix such as "GA - Pageview".',
    ),
    ThresholdRule(
        check='tag_naming', select=_tags_with_special_characters, limit=0,
        impact='low', category='structure',
        title='Rename tags with special characters',
        message='{count} tags contain special characters: {names}.',
    ),
    ThresholdRule(
        check='trigger_naming', select=_misnamed_page_view_triggers, limit='max_misnamed_page_view_triggers',
        impact='low', category='structure',
        title='Improve trigger naming convention',
        message='{count} page view triggers do not mention the trigger type in their name.',
    ),
    ThresholdRule(
        check='variable_naming', select=_variables_with_spaces, limit=0,
        impact='medium', category='structure',
        title='Improve variable naming convention',
        message='{count} variables contain spaces: {names}.',
    ),
    ThresholdRule(
        check='trigger_complexity', select=_complex_triggers, limit=0,
        impact='medium', category='structure',
        title='Simplify complex triggers',
        message='{count} triggers are hard to maintain: {names}.',
    ),
    ThresholdRule(
        check='tag_firing_order', select=_all_pages_tags, limit='max_all_pages_tags',
        impact='high', category='performance',
        title='Too many tags fire on all pages',
        message='{count} tags fire on every page (limit {limit}).',
    ),
    ThresholdRule(
        check='blocking_triggers', select=_tags_with_blocking_triggers, limit='max_blocking_trigger_tags',
        impact='high', category='performance',
        title='Review blocking triggers',
        message='{count} tags use blocking triggers (limit {limit}).',
    ),
    ThresholdRule(
        check='hardcoded_values', select=_tags_with_hardcoded_ids, limit='max_hardcoded_id_tags',
        impact='medium', category='best-practice',
        title='Move hardcoded IDs into variables',
        message='{count} tags use hardcoded measurement or conversion IDs.',
    ),
    ThresholdRule(
        check='ga4_event_parameters', select=_ga4_event_tags_without_parameters,
        limit='max_tags_without_event_parameters',
        impact='medium', category='best-practice',
        title='Add GA4 event parameters',
        message='{count} GA4 event tags send no event parameters.',
    ),
    ThresholdRule(
        check='tag_timing', select=_early_event_tags, limit='max_early_event_tags',
        impact='medium', category='performance',
        title='Review early tag timing',
        message='{count} tags use early event parameters.',
    ),
]


class GTMRulesEngine:
    def __init__(self, container: GTMContainer, config: RulesConfig = None):
        self.container = container
        self.config = config or RulesConfig()
        self.issues = []
        self.suggestions = []

    def analyze(self) -> Dict:
        """Run every enabled check and score the findings"""
        self.issues = []
        self.suggestions = []

        for check in CHECKS:
            if not self.config.is_enabled(check):
                continue
            self._run_check(check)

        scores = self.calculate_scores()
        best_practices = check_best_practices(
            self.container.tags,
            self.container.triggers,
            self.container.variables,
            self.container.folders
        )
        logger.info(
            f"Rules analysis finished: {len(self.issues)} issues, "
            f"{len(self.suggestions)} suggestions, overall score {scores['overall']}"
        )
        return {
            'issues': self.issues,
            'suggestions': self.suggestions,
            'scores': scores,
            'bestPractices': best_practices
        }

    def _run_check(self, check: str):
        try:
            for rule in ENTITY_RULES:
                if rule.check == check:
                    self._apply_entity_rule(rule)
            for rule in THRESHOLD_RULES:
                if rule.check == check:
                    self._apply_threshold_rule(rule)
            method = getattr(self, f'check_{check}', None)
            if method is not None:
                method()
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            logger.warning(f"Check '{check}' skipped on malformed input: {e}")

    # ------------------------------------------------------------------
    # Record builders
    # ------------------------------------------------------------------

    def add_issue(self, check: str, kind: str, entity: Optional[Dict], severity: str, category: str,
                  title: str, message: str, action: str = 'review', **extra) -> Dict:
        entity = entity or {}
        entity_id = self._entity_id(kind, entity)
        issue = {
            'id': generate_unique_id({'type': check, 'name': _name(entity), 'fingerprint': entity_id}),
            'check': check,
            'type': kind,
            'entityId': entity_id,
            'entityName': _name(entity),
            'severity': severity,
            'category': category,
            'title': title,
            'message': message,
            'action': action,
            'fixable': action in ('delete', 'deduplicate')
        }
        issue.update(extra)
        self.issues.append(issue)
        return issue

    def add_suggestion(self, check: str, impact: str, category: str, title: str, message: str,
                       entities: List[Dict] = None) -> Dict:
        suggestion = {
            'id': generate_unique_id({'type': check, 'name': title}),
            'check': check,
            'type': 'suggestion',
            'category': category,
            'impact': impact,
            'title': title,
            'message': message,
            'entities': [_name(e) for e in entities or []]
        }
        self.suggestions.append(suggestion)
        return suggestion

    @staticmethod
    def _entity_id(kind: str, entity: Dict) -> str:
        id_field = {
            'tag': 'tagId',
            'trigger': 'triggerId',
            'variable': 'variableId',
            'folder': 'folderId',
            'template': 'templateId'
        }.get(kind)
        value = entity.get(id_field) if id_field else None
        return str(value) if value is not None else ''

    def _entities_of(self, kind: str) -> List[Dict]:
        return {
            'tag': self.container.tags,
            'trigger': self.container.triggers,
            'variable': self.container.variables,
        }[kind]

    def _apply_entity_rule(self, rule: EntityRule):
        matches = [e for e in self._entities_of(rule.kind) if rule.predicate(e)]
        if not matches:
            return
        if rule.aggregate:
            names = [_name(e) for e in matches]
            message = rule.message.format(count=len(matches), names=', '.join(names))
            self.add_issue(rule.check, rule.kind, None, rule.severity, rule.category, rule.title,
                           message, rule.action, entities=names)
            return
        for entity in matches:
            values = {'name': _name(entity), 'type': entity.get('type', '')}
            if rule.details:
                values.update(rule.details(entity))
            self.add_issue(rule.check, rule.kind, entity, rule.severity, rule.category, rule.title,
                           rule.message.format(**values), rule.action)

    def _apply_threshold_rule(self, rule: ThresholdRule):
        limit = getattr(self.config, rule.limit) if isinstance(rule.limit, str) else rule.limit
        selected = rule.select(self.container, self.config)
        if len(selected) <= limit:
            return
        message = rule.message.format(
            count=len(selected),
            limit=limit,
            names=', '.join(_name(e) for e in selected)
        )
        self.add_suggestion(rule.check, rule.impact, rule.category, rule.title, message, selected)

    # ------------------------------------------------------------------
    # Unused elements
    # ------------------------------------------------------------------

    def check_unused_tags(self):
        for tag in self.container.find_unused_tags():
            self.add_issue('unused_tags', 'tag', tag, 'medium', 'cleanup', 'Unused tag found',
                           f'Tag "{_name(tag)}" is not fired by any trigger.', 'delete')

    def check_unused_triggers(self):
        for trigger in self.container.find_unused_triggers():
            self.add_issue('unused_triggers', 'trigger', trigger, 'low', 'cleanup', 'Unused trigger found',
                           f'Trigger "{_name(trigger)}" is not referenced by any tag.', 'delete')

    def check_unused_variables(self):
        for variable in self.container.find_unused_variables():
            self.add_issue('unused_variables', 'variable', variable, 'low', 'cleanup', 'Unused variable found',
                           f'Variable "{_name(variable)}" is not referenced anywhere.', 'delete')

    def check_unused_folders(self):
        for folder in self.container.find_unused_folders():
            self.add_issue('unused_folders', 'folder', folder, 'low', 'cleanup', 'Empty folder found',
                           f'Folder "{_name(folder)}" contains no tags, triggers or variables.', 'delete')

    def check_unused_templates(self):
        for template in self.container.find_unused_templates():
            self.add_issue('unused_templates', 'template', template, 'low', 'cleanup', 'Unused template found',
                           f'Custom template "{_name(template)}" is not used.', 'delete')

    # ------------------------------------------------------------------
    # Duplicates
    # ------------------------------------------------------------------

    def _report_duplicates(self, check: str, kind: str, groups: List[Dict], severity: str):
        for group in groups:
            items = group['items']
            keep, remove = items[0], items[1:]
            self.add_issue(
                check, kind, keep, severity, 'duplication',
                f'{len(items)} duplicates found',
                f'{len(items)} {kind}s share the configuration of "{_name(keep)}"; '
                f'{len(remove)} can be removed.',
                'deduplicate',
                signature=group['signature'],
                details={
                    'keep': _name(keep),
                    'duplicates': [_name(item) for item in remove]
                }
            )

    def check_duplicate_tags(self):
        self._report_duplicates('duplicate_tags', 'tag', self.container.find_duplicates()['tags'], 'medium')

    def check_duplicate_triggers(self):
        self._report_duplicates('duplicate_triggers', 'trigger', self.container.find_duplicates()['triggers'], 'high')

    def check_duplicate_variables(self):
        self._report_duplicates('duplicate_variables', 'variable',
                                self.container.find_duplicates()['variables'], 'medium')

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def check_folder_usage(self):
        items = self.container.tags + self.container.triggers + self.container.variables
        if not items:
            return
        unorganized = [e for e in items if not e.get('parentFolderId')]
        percent = len(unorganized) / len(items) * 100
        if percent > 50 and len(unorganized) > 10:
            self.add_suggestion('folder_usage', 'medium', 'structure', 'Organize the container with folders',
                                f'{round(percent)}% of tags, triggers and variables are not in a folder.')

    def check_tag_sequencing(self):
        with_priority = [t for t in self.container.tags if t.get('priority')]
        without_priority = [t for t in self.container.tags if not t.get('priority') and t.get('type') != 'html']
        if len(with_priority) > 5 and len(without_priority) > 10:
            self.add_suggestion('tag_sequencing', 'medium', 'performance', 'Review tag firing priorities',
                                f'{len(with_priority)} tags set a priority while {len(without_priority)} do not.')

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    def check_variable_references(self):
        for variable in _variables_with_many_references(self.container, self.config):
            count = len(self.container.get_variable_references(_name(variable)))
            self.add_suggestion('variable_references', 'low', 'performance', 'Variable with many references',
                                f'Variable "{_name(variable)}" references {count} other variables.', [variable])

    # ------------------------------------------------------------------
    # Privacy and security
    # ------------------------------------------------------------------

    def check_data_layer_names(self):
        names = []
        tags = []
        for tag in self.container.tags:
            param = get_parameter(tag, 'dataLayerName')
            if param is not None and param.get('value') != 'dataLayer':
                names.append(param.get('value'))
                tags.append(tag)
        if len(set(map(str, names))) > 1:
            self.add_suggestion('data_layer_names', 'medium', 'structure', 'Inconsistent data layer names',
                                f'Tags push to {len(set(map(str, names)))} different data layers.', tags)

    def check_permission_rules(self):
        for group in as_list(self.container.container_version.get('securityGroups')):
            if isinstance(group, dict) and get_parameter_value(group, 'enableAll') == 'true':
                self.add_suggestion('permission_rules', 'high', 'security', 'Overly permissive permission rules',
                                    f'Security group "{_name(group)}" allows all actions.')

    # ------------------------------------------------------------------
    # Best practices
    # ------------------------------------------------------------------

    def check_preview_mode(self):
        container = self.container.container_version.get('container')
        preview = container.get('containerPreviewConfiguration') if isinstance(container, dict) else None
        if not isinstance(preview, dict) or not preview.get('enablePreviewPane'):
            self.add_suggestion('preview_mode', 'low', 'best-practice', 'Configure preview mode',
                                'Preview mode is not fully configured.')

    def check_environment_settings(self):
        environments = as_list(self.container.container_version.get('environment'))
        if len(environments) < 2:
            self.add_suggestion('environment_settings', 'medium', 'best-practice', 'Set up environments',
                                f'Only {len(environments)} environments are configured.')

    def check_built_in_variables_usage(self):
        container = self.container.container_version.get('container')
        enabled = as_list(container.get('enabledBuiltInVariable')) if isinstance(container, dict) else []
        missing = [name for name in RECOMMENDED_BUILT_IN_VARIABLES if name not in enabled]
        if missing:
            self.add_suggestion('built_in_variables_usage', 'low', 'best-practice',
                                'Enable recommended built-in variables',
                                f"Recommended built-in variables are not enabled: {', '.join(missing)}.")

    def check_missing_descriptions(self):
        entities = self.container.tags + self.container.triggers + [
            v for v in self.container.variables if not is_built_in(v)
        ]
        if not entities:
            return
        without_notes = [e for e in entities if not str(e.get('notes') or '').strip()]
        ratio = len(without_notes) / len(entities)
        if ratio > self.config.max_missing_description_ratio:
            self.add_suggestion('missing_descriptions', 'low', 'best-practice', 'Add descriptions',
                                f'{round(ratio * 100)}% of tags, triggers and variables have no notes.')

    # ------------------------------------------------------------------
    # Google Analytics
    # ------------------------------------------------------------------

    def check_ga4_configuration(self):
        ga4_tags = [t for t in self.container.tags if t.get('type') in GA4_TAG_TYPES]
        if not ga4_tags:
            self.add_suggestion('ga4_configuration', 'high', 'best-practice', 'GA4 configuration tag missing',
                                'No GA4 tag was found in the container.')
            return

        config_tags = [t for t in ga4_tags if t.get('type') == 'gawc']
        if len(config_tags) > 1:
            self.add_issue('ga4_configuration', 'tag', None, 'medium', 'best-practice',
                           'Multiple GA4 configuration tags',
                           f'There are {len(config_tags)} GA4 configuration tags; one is usually enough.',
                           entities=[_name(t) for t in config_tags])

        not_on_all_pages = [t for t in config_tags if not fires_on_all_pages(t)]
        if not_on_all_pages:
            self.add_issue('ga4_configuration', 'tag', None, 'high', 'best-practice',
                           'GA4 configuration not on all pages',
                           'The GA4 configuration tag should fire on the All Pages trigger: '
                           f"{', '.join(_name(t) for t in not_on_all_pages)}.",
                           entities=[_name(t) for t in not_on_all_pages])

    def check_ga4_measurement_id(self):
        measurement_ids = []
        for tag in self.container.tags:
            if tag.get('type') not in GA4_TAG_TYPES:
                continue
            value = literal_parameter(tag, 'measurementId')
            if value and value not in measurement_ids:
                measurement_ids.append(value)
        if len(measurement_ids) > 1:
            self.add_issue('ga4_measurement_id', 'tag', None, 'medium', 'best-practice',
                           'Multiple GA4 measurement IDs',
                           f"{len(measurement_ids)} different GA4 measurement IDs are used: "
                           f"{', '.join(measurement_ids)}.",
                           details={'measurementIds': measurement_ids})

    # ------------------------------------------------------------------
    # Marketing
    # ------------------------------------------------------------------

    def check_marketing_tags_privacy(self):
        marketing = [t for t in self.container.tags if is_marketing_tag(t)]
        consent = [t for t in self.container.tags if is_consent_tag(t)]
        if marketing and not consent:
            self.add_issue('marketing_tags_privacy', 'tag', None, 'critical', 'privacy',
                           'Consent management missing',
                           f'{len(marketing)} marketing tags are present but no consent management tag.',
                           entities=[_name(t) for t in marketing])

    def check_consent_integration(self):
        if not any(is_consent_tag(t) for t in self.container.tags):
            return
        without_consent = []
        for tag in self.container.tags:
            if tag.get('type') not in ('awct', 'fbq', 'adsct'):
                continue
            has_setting = isinstance(tag.get('consentSettings'), dict) and \
                tag['consentSettings'].get('consentStatus') not in (None, 'NOT_SET')
            if not has_setting and get_parameter(tag, 'consentStatus') is None:
                without_consent.append(tag)
        if without_consent:
            self.add_suggestion('consent_integration', 'high', 'privacy', 'Complete consent integration',
                                f'{len(without_consent)} marketing tags have no consent requirement.',
                                without_consent)

    # ------------------------------------------------------------------
    # Reference graph
    # ------------------------------------------------------------------

    def _known_references(self, var_name: str) -> List[str]:
        return [
            name for name in self.container.get_variable_references(var_name)
            if self.container.get_variable_by_name(name) is not None
        ]

    def find_circular_references(self) -> List[List[str]]:
        """
        Depth-first walk with a global visited set and a recursion stack.
        Each cycle is reported once, as the path from the revisited
        variable back to itself.
        """
        visited = set()
        on_stack = []
        cycles = []

        def visit(name: str):
            if name in on_stack:
                start = on_stack.index(name)
                cycles.append(on_stack[start:] + [name])
                return
            if name in visited:
                return
            visited.add(name)
            on_stack.append(name)
            for ref in self._known_references(name):
                visit(ref)
            on_stack.pop()

        for variable in self.container.variables:
            name = _name(variable)
            if name and name not in visited:
                visit(name)
        return cycles

    def check_circular_dependencies(self):
        for path in self.find_circular_references():
            variable = self.container.get_variable_by_name(path[0])
            self.add_issue('circular_dependencies', 'variable', variable, 'critical', 'best-practice',
                           'Circular dependency found',
                           f"Circular reference: {' → '.join(path)}",
                           'fix', details={'path': path})

    def get_reference_depth(self, var_name: str, visited: Set[str] = None) -> int:
        """Longest reference chain below a variable; a variable with no references has depth 1"""
        if visited is None:
            visited = set()
        if var_name in visited:
            return 0
        visited.add(var_name)

        refs = self._known_references(var_name)
        if not refs:
            return 1
        deepest = 0
        for ref in refs:
            deepest = max(deepest, self.get_reference_depth(ref, visited.copy()))
        return deepest + 1

    def check_nested_references(self):
        for variable in self.container.variables:
            depth = self.get_reference_depth(_name(variable))
            if depth > self.config.max_reference_depth:
                self.add_issue('nested_references', 'variable', variable, 'medium', 'best-practice',
                               'Deeply nested variable',
                               f'Variable "{_name(variable)}" has a reference depth of {depth}.',
                               details={'depth': depth})

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _issues_in(self, *categories: str) -> List[Dict]:
        return [i for i in self.issues if i['category'] in categories]

    def calculate_scores(self) -> Dict:
        overall = calculate_score(self.issues, SCORE_DENOMINATORS['overall'])
        return {
            'overall': overall,
            'grade': get_score_grade(overall),
            'cleanup': calculate_score(self._issues_in('cleanup'), SCORE_DENOMINATORS['cleanup']),
            'performance': calculate_score(self._issues_in('performance'), SCORE_DENOMINATORS['performance']),
            'structure': calculate_score(self._issues_in('duplication', 'structure'),
                                         SCORE_DENOMINATORS['structure']),
            'security': calculate_score(self._issues_in('security'), SCORE_DENOMINATORS['security']),
            'privacy': calculate_score(self._issues_in('privacy'), SCORE_DENOMINATORS['privacy']),
            'ssgReadiness': self.calculate_ssg_readiness()
        }

    def calculate_ssg_readiness(self) -> int:
        score = 100
        client_heavy = [t for t in self.container.tags if t.get('type') in SSG_CLIENT_HEAVY_TYPES]
        score -= min(len(client_heavy) * 2, 50)
        if any(t.get('type') == 'gawc' for t in self.container.tags):
            score += 10
        if any(t.get('type') == 'CUSTOM_EVENT' for t in self.container.triggers):
            score += 5
        return max(0, min(100, score))
