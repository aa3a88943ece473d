"""
Server-side GTM container generator.

Turns the migratable part of a client-side container (as selected by
GTMServerSidePrep.analyze_container_for_ssg) into an importable server
container export, and patches a copy of the client container so its GA4
tags send to the tagging server.

Every generate() call works on a fresh GenerationContext, so the same
generator, container, analysis and clock always yield the same document.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from loguru import logger

from gtm_container import ALL_PAGES_TRIGGER_ID, GTMContainer
from gtm_exceptions import GeneratorError
from gtm_ssg_prep import VENDOR_FLAGS, vendor_flags_for
from gtm_template_catalog import EMPTY_CATALOG, TemplateCatalog
from gtm_utils import as_list, deep_clone, get_parameter_value, slugify

PLACEHOLDER_PREFIX = '[HIER_EINFUEGEN:'
TRANSPORT_URL_PLACEHOLDER = '[HIER_EINFUEGEN: Server-Side GTM URL, z.B. https://sgtm.example.com]'

TAG_MANAGER_URL = 'https://tagmanager.google.com/#/container/accounts/0/containers/0/workspaces?apiLink=container'

CONTAINER_FEATURES = {
    'supportUserPermissions': True,
    'supportEnvironments': True,
    'supportWorkspaces': True,
    'supportGtagConfigs': False,
    'supportBuiltInVariables': True,
    'supportClients': True,
    'supportFolders': True,
    'supportTags': True,
    'supportTemplates': True,
    'supportTriggers': True,
    'supportVariables': True,
    'supportVersions': True,
    'supportZones': True,
    'supportTransformations': True
}

ID_KINDS = ('tag', 'trigger', 'variable', 'client', 'folder', 'template')

SETTINGS_FOLDER = 'Einstellungen'
EVENT_DATA_FOLDER = 'Event Data'

# Vendor folders in allocation order, keyed by the analysis flag that enables them
VENDOR_FOLDERS = [
    ('hasGA4', 'GA4'),
    ('hasGoogleAds', 'Google Ads'),
    ('hasFacebook', 'Facebook'),
    ('hasLinkedIn', 'LinkedIn'),
    ('hasMicrosoftAds', 'Microsoft Ads'),
]
FLOODLIGHT_FOLDER = 'Floodlight'

TAG_TYPE_FOLDERS = {
    'gaawe': 'GA4',
    'gawc': 'GA4',
    'awct': 'Google Ads',
    'adsct': 'Google Ads',
    'flc': FLOODLIGHT_FOLDER,
    'fls': FLOODLIGHT_FOLDER,
    'fbq': 'Facebook',
    'lnq': 'LinkedIn',
    'ms': 'Microsoft Ads'
}

TAG_TYPE_VENDORS = {
    'gawc': 'ga4',
    'gaawe': 'ga4',
    'awct': 'google_ads',
    'adsct': 'google_ads',
    'flc': 'floodlight',
    'fls': 'floodlight',
    'fbq': 'facebook',
    'lnq': 'linkedin',
    'ms': 'microsoft_ads'
}

VENDOR_LABELS = {
    'gaawe': 'GA4',
    'gawc': 'GA4',
    'awct': 'ADS',
    'adsct': 'ADS',
    'flc': 'Floodlight',
    'fls': 'Floodlight',
    'img': 'Image',
    'fbq': 'Facebook',
    'lnq': 'LinkedIn',
    'ms': 'Microsoft Ads'
}

DEFAULT_SERVER_TAG_TYPE = 'sgtmgaaw'
SERVER_TAG_TYPES = {
    'gaawe': 'sgtmgaaw',
    'gawc': 'sgtmgaaw',
    'awct': 'sgtmadsct',
    'adsct': 'sgtmadsremarket',
    'flc': 'sgtmgaaw',
    'fls': 'sgtmgaaw',
    'img': 'sgtmgaaw'
}

# Vendors without a built-in server tag; their tag type comes from the template catalogue
TEMPLATE_VENDORS = [
    ('facebook', 'fbq', 'hasFacebook'),
    ('linkedin', 'lnq', 'hasLinkedIn'),
    ('microsoft_ads', 'ms', 'hasMicrosoftAds'),
]

VENDOR_CONSTANTS = {
    'fbq': [
        ('const - facebook access token', '[HIER_EINFUEGEN: Facebook Access Token]'),
        ('const - facebook pixel id', '[HIER_EINFUEGEN: Facebook Pixel ID]'),
    ],
    'lnq': [
        ('const - linkedin access token', '[HIER_EINFUEGEN: LinkedIn Access Token]'),
        ('const - linkedin conversion rule urn', '[HIER_EINFUEGEN: LinkedIn Conversion Rule URN]'),
    ],
    'ms': [
        ('const - microsoft uet tag id', '[HIER_EINFUEGEN: Microsoft UET Tag ID]'),
    ],
}

EVENT_DATA_KEYS = [
    'email_address',
    'phone_number',
    'first_name',
    'last_name',
    'user_id',
    'value',
    'currency',
    'transaction_id',
    'event_id',
    'items',
    'content_ids',
    'contents',
    'postal_code',
    'city',
    'country',
    'region'
]

FIXED_EVENT_NAMES = {
    'PAGE_VIEW': 'page_view',
    'LINK_CLICK': 'click',
    'CLICK': 'click',
    'FORM_SUBMIT': 'form_submit',
    'SUBMIT': 'form_submit',
    'SCROLL': 'scroll',
    'TIMER': 'timer'
}

ALL_EVENTS_KEY = '__all_events__'
ALL_PAGES_TRIGGER = {'triggerId': ALL_PAGES_TRIGGER_ID, 'name': 'All Pages', 'type': 'PAGE_VIEW'}


@dataclass
class GenerationContext:
    """Mutable state of one generate() run"""
    analysis: Dict
    tags_to_migrate: List[Dict]
    fingerprint: str
    counters: Dict[str, int] = field(default_factory=lambda: {kind: 0 for kind in ID_KINDS})
    value_to_constant: Dict[str, str] = field(default_factory=dict)
    constant_names: Set[str] = field(default_factory=set)
    event_to_trigger: Dict[str, str] = field(default_factory=dict)
    folders: List[Dict] = field(default_factory=list)
    constants: List[Dict] = field(default_factory=list)
    event_data_variables: List[Dict] = field(default_factory=list)
    templates: List[Dict] = field(default_factory=list)
    clients: List[Dict] = field(default_factory=list)
    triggers: List[Dict] = field(default_factory=list)
    tags: List[Dict] = field(default_factory=list)
    tag_mapping: List[Dict] = field(default_factory=list)
    placeholders: List[Dict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def next_id(self, kind: str) -> str:
        self.counters[kind] = self.counters.get(kind, 0) + 1
        return str(self.counters[kind])

    def flag(self, name: str) -> bool:
        return bool(self.analysis.get(name))

    def folder_id(self, name: str) -> Optional[str]:
        for folder in self.folders:
            if folder['name'] == name:
                return folder['folderId']
        return None

    def constant_for(self, raw_value) -> Optional[str]:
        if not isinstance(raw_value, str):
            return None
        return self.value_to_constant.get(raw_value)

    def find_constant_name(self, search: str) -> Optional[str]:
        for constant in self.constants:
            if search in constant['name']:
                return constant['name']
        return None

    def warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)


def is_placeholder(value) -> bool:
    return isinstance(value, str) and value.startswith(PLACEHOLDER_PREFIX)


def is_concrete_literal(value) -> bool:
    """A value that can be copied as is: non-empty and not a {{variable}} reference"""
    return isinstance(value, str) and bool(value.strip()) and '{{' not in value


def _template(key: str, value: str) -> Dict:
    return {'type': 'TEMPLATE', 'key': key, 'value': value}


def _boolean(key: str, value: str) -> Dict:
    return {'type': 'BOOLEAN', 'key': key, 'value': value}


def get_event_name_from_trigger(trigger: Optional[Dict]) -> str:
    """
    Server event name for a client trigger.

    Page views become ``page_view``, custom events use the first literal
    ``arg1`` of their event filter, clicks, submits, scrolls and timers
    get fixed names, and anything else falls back to a slug of the
    trigger name.
    """
    if not isinstance(trigger, dict):
        return 'unknown_event'

    trigger_type = trigger.get('type')
    if trigger_type == 'CUSTOM_EVENT':
        for event_filter in as_list(trigger.get('customEventFilter')):
            if not isinstance(event_filter, dict):
                continue
            for param in as_list(event_filter.get('parameter')):
                if isinstance(param, dict) and param.get('key') == 'arg1' \
                        and isinstance(param.get('value'), str) and param['value']:
                    return param['value']
        return slugify(trigger.get('name'))

    if isinstance(trigger_type, str) and trigger_type in FIXED_EVENT_NAMES:
        return FIXED_EVENT_NAMES[trigger_type]
    return slugify(trigger.get('name'))


def get_client_name_for_tag(tag: Dict) -> str:
    return 'Google Ads' if tag.get('type') in ('awct', 'adsct') else 'GA4'


def get_vendor_label(tag_type: str) -> str:
    return VENDOR_LABELS.get(tag_type, 'Custom')


def conversion_label_constant_name(tag: Dict) -> str:
    default = 'remarketing' if tag.get('type') == 'adsct' else 'conversion'
    name = tag.get('name') if isinstance(tag.get('name'), str) else ''
    safe_name = re.sub(r'\s+', ' ', re.sub(r'[^a-z0-9\s]', '', name.lower())).strip()
    return f'const - google ads {safe_name or default} conversion label'


def apply_vendor_selection(analysis: Dict, selected_vendors: Optional[Set[str]]) -> Dict:
    """
    Copy of the analysis restricted to the selected vendors.

    Without a selection the migration set is kept and only missing
    derived flags are filled in. With a selection every vendor flag is
    recomputed from the filtered tags.
    """
    selected = dict(analysis or {})
    tags = [
        t for t in as_list(selected.get('tagsToMigrate'))
        if isinstance(t, dict) and isinstance(t.get('type'), str)
    ]

    if not selected_vendors:
        selected['tagsToMigrate'] = tags
        if 'hasGA4Tags' not in selected:
            selected['hasGA4Tags'] = any(t.get('type') in VENDOR_FLAGS['hasGA4'] for t in tags)
        if 'needsGa4Client' not in selected:
            selected['needsGa4Client'] = len(tags) > 0
        return selected

    tags = [t for t in tags if TAG_TYPE_VENDORS.get(t.get('type')) in selected_vendors]
    selected['tagsToMigrate'] = tags
    selected.update(vendor_flags_for(tags))
    selected['hasGA4Tags'] = selected['hasGA4']
    selected['needsGa4Client'] = len(tags) > 0
    logger.debug(f"Vendor selection {sorted(selected_vendors)} keeps {len(tags)} tags")
    return selected


# ----------------------------------------------------------------------
# Generation steps
# ----------------------------------------------------------------------

def _add_folder(ctx: GenerationContext, name: str):
    ctx.folders.append({
        'accountId': '0',
        'containerId': '0',
        'folderId': ctx.next_id('folder'),
        'name': name,
        'fingerprint': ctx.fingerprint
    })


def generate_folders(ctx: GenerationContext) -> List[Dict]:
    _add_folder(ctx, SETTINGS_FOLDER)
    _add_folder(ctx, EVENT_DATA_FOLDER)
    for flag, name in VENDOR_FOLDERS:
        if ctx.flag(flag):
            _add_folder(ctx, name)
    if any(t.get('type') in ('flc', 'fls') for t in ctx.tags_to_migrate):
        _add_folder(ctx, FLOODLIGHT_FOLDER)
    return ctx.folders


def _add_constant(ctx: GenerationContext, name: str, value: str) -> str:
    variable = {
        'accountId': '0',
        'containerId': '0',
        'variableId': ctx.next_id('variable'),
        'name': name,
        'type': 'c',
        'parameter': [_template('value', value)],
        'fingerprint': ctx.fingerprint,
        'formatValue': {}
    }
    folder_id = ctx.folder_id(SETTINGS_FOLDER)
    if folder_id:
        variable['parentFolderId'] = folder_id
    ctx.constants.append(variable)
    ctx.constant_names.add(name)
    return name


def _constant_for_value(ctx: GenerationContext, raw_value, base_name: str, placeholder: str) -> Optional[str]:
    """
    Constant standing for a configuration value found on a source tag.

    One constant per distinct raw value. Concrete literals are copied;
    variable references become a placeholder to fill in by hand. A second
    distinct value for the same purpose gets a numbered name.
    """
    if not isinstance(raw_value, str) or not raw_value:
        return None
    if raw_value in ctx.value_to_constant:
        logger.debug(f"Reusing constant '{ctx.value_to_constant[raw_value]}' for value {raw_value!r}")
        return ctx.value_to_constant[raw_value]

    name = base_name
    counter = 2
    while name in ctx.constant_names:
        name = f'{base_name} {counter}'
        counter += 1

    value = raw_value if is_concrete_literal(raw_value) else placeholder
    _add_constant(ctx, name, value)
    ctx.value_to_constant[raw_value] = name
    return name


def _named_constant(ctx: GenerationContext, name: str, value: str):
    if name not in ctx.constant_names:
        _add_constant(ctx, name, value)


def generate_constant_variables(ctx: GenerationContext, transport_url: Optional[str] = None) -> List[Dict]:
    for tag in ctx.tags_to_migrate:
        tag_type = tag.get('type')

        if tag_type in ('gaawe', 'gawc'):
            measurement_id = get_parameter_value(tag, 'measurementId') or get_parameter_value(tag, 'gaSettings')
            _constant_for_value(ctx, measurement_id, 'const - ga4 measurement id',
                                '[HIER_EINFUEGEN: GA4 Measurement ID, z.B. G-XXXXXXXXXX]')

        elif tag_type in ('awct', 'adsct'):
            _constant_for_value(ctx, get_parameter_value(tag, 'conversionId'), 'const - google ads conversion id',
                                '[HIER_EINFUEGEN: Google Ads Conversion ID, z.B. AW-123456789]')
            tag_name = tag.get('name') if isinstance(tag.get('name'), str) and tag.get('name') else 'Tag'
            _constant_for_value(ctx, get_parameter_value(tag, 'conversionLabel'),
                                conversion_label_constant_name(tag),
                                f'[HIER_EINFUEGEN: Conversion Label fuer {tag_name}]')

        for name, placeholder in VENDOR_CONSTANTS.get(tag_type, []):
            _named_constant(ctx, name, placeholder)

    _named_constant(ctx, 'const - transport url', transport_url or TRANSPORT_URL_PLACEHOLDER)
    return ctx.constants


def generate_event_data_variables(ctx: GenerationContext) -> List[Dict]:
    folder_id = ctx.folder_id(EVENT_DATA_FOLDER)
    for key_path in EVENT_DATA_KEYS:
        variable = {
            'accountId': '0',
            'containerId': '0',
            'variableId': ctx.next_id('variable'),
            'name': f'ed - {key_path}',
            'type': 'ed',
            'parameter': [
                _boolean('setDefaultValue', 'false'),
                _template('keyPath', key_path)
            ],
            'fingerprint': ctx.fingerprint,
            'formatValue': {}
        }
        if folder_id:
            variable['parentFolderId'] = folder_id
        ctx.event_data_variables.append(variable)
    return ctx.event_data_variables


def generate_custom_templates(ctx: GenerationContext, catalog: TemplateCatalog,
                              selected_vendors: Optional[Set[str]] = None) -> List[Dict]:
    for vendor_key, _, flag in TEMPLATE_VENDORS:
        if selected_vendors and vendor_key not in selected_vendors:
            continue
        if not ctx.flag(flag):
            continue

        template = catalog.resolve(vendor_key)
        if template is None:
            ctx.warn(f"No server template in the catalogue for '{vendor_key}'; "
                     f"its tags fall back to {DEFAULT_SERVER_TAG_TYPE}")
            continue

        ctx.templates.append({
            'accountId': '0',
            'containerId': '0',
            'templateId': ctx.next_id('template'),
            'name': template.display_name,
            'fingerprint': ctx.fingerprint,
            'templateData': template.template_data
        })
    return ctx.templates


def generate_clients(ctx: GenerationContext) -> List[Dict]:
    if ctx.flag('needsGa4Client'):
        ctx.clients.append({
            'accountId': '0',
            'containerId': '0',
            'clientId': ctx.next_id('client'),
            'name': 'GA4',
            'type': 'gaaw_client',
            'parameter': [
                _template('cookieDomain', 'auto'),
                _template('cookieMaxAgeInSec', '63072000'),
                _boolean('activateDefaultPaths', 'true'),
                _template('cookiePath', '/'),
                _template('cookieManagement', 'server'),
                _template('cookieName', 'FPID')
            ],
            'fingerprint': ctx.fingerprint
        })
    return ctx.clients


def _event_trigger(ctx: GenerationContext, name: str, match_type: str, event_value: str, client_name: str) -> Dict:
    return {
        'accountId': '0',
        'containerId': '0',
        'triggerId': ctx.next_id('trigger'),
        'name': name,
        'type': 'CUSTOM_EVENT',
        'customEventFilter': [{
            'type': match_type,
            'parameter': [_template('arg0', '{{_event}}'), _template('arg1', event_value)]
        }],
        'filter': [{
            'type': 'CONTAINS',
            'parameter': [_template('arg0', '{{Client Name}}'), _template('arg1', client_name)]
        }],
        'fingerprint': ctx.fingerprint
    }


def resolve_firing_trigger(container: GTMContainer, tag: Dict) -> Optional[Dict]:
    """First firing trigger of a tag that exists in the container"""
    for trigger_id in as_list(tag.get('firingTriggerId')):
        if str(trigger_id) == ALL_PAGES_TRIGGER_ID:
            return ALL_PAGES_TRIGGER
        trigger = container.get_trigger_by_id(trigger_id)
        if trigger:
            return trigger
    return None


def generate_triggers(ctx: GenerationContext, container: GTMContainer) -> List[Dict]:
    if ctx.flag('needsGa4Client') or ctx.flag('hasGoogleAds'):
        trigger = _event_trigger(ctx, 'All Events - GA4', 'MATCH_REGEX', '.*', 'GA4')
        ctx.triggers.append(trigger)
        ctx.event_to_trigger[ALL_EVENTS_KEY] = trigger['triggerId']

    for tag in ctx.tags_to_migrate:
        event_name = get_event_name_from_trigger(resolve_firing_trigger(container, tag))
        if event_name in ctx.event_to_trigger:
            continue
        client_name = get_client_name_for_tag(tag)
        trigger = _event_trigger(ctx, f'[{client_name}] {event_name}', 'EQUALS', event_name, client_name)
        ctx.triggers.append(trigger)
        ctx.event_to_trigger[event_name] = trigger['triggerId']
    return ctx.triggers


def map_tag_type(tag_type: str, catalog: TemplateCatalog) -> Optional[str]:
    """Server tag type for a client tag type; None when a catalogue template is missing"""
    for vendor_key, client_type, _ in TEMPLATE_VENDORS:
        if tag_type == client_type:
            template = catalog.resolve(vendor_key)
            return template.type_id if template else None
    return SERVER_TAG_TYPES.get(tag_type)


def _create_tag_shell(ctx: GenerationContext, name: str, tag_type: str, parameter: List[Dict],
                      firing_trigger_id: str, parent_folder_id: Optional[str]) -> Dict:
    tag = {
        'accountId': '0',
        'containerId': '0',
        'tagId': ctx.next_id('tag'),
        'name': name,
        'type': tag_type,
        'parameter': parameter,
        'fingerprint': ctx.fingerprint,
        'firingTriggerId': [firing_trigger_id],
        'tagFiringOption': 'ONCE_PER_EVENT',
        'consentSettings': {'consentStatus': 'NOT_SET'},
        'monitoringMetadata': {'type': 'MAP'}
    }
    if parent_folder_id:
        tag['parentFolderId'] = parent_folder_id
    ctx.tags.append(tag)
    return tag


def _constant_reference(ctx: GenerationContext, tag_name: str, key: str,
                        constant_name: Optional[str], placeholder: str) -> Dict:
    if constant_name:
        return _template(key, '{{' + constant_name + '}}')
    ctx.placeholders.append({'name': f'{tag_name} > {key}', 'placeholder': placeholder})
    return _template(key, placeholder)


def _ga4_params(ctx: GenerationContext, tag_name: str, constant_name: Optional[str]) -> List[Dict]:
    return [
        _constant_reference(ctx, tag_name, 'measurementId', constant_name, '[HIER_EINFUEGEN: GA4 Measurement ID]'),
        _template('epToIncludeDropdown', 'all'),
        _template('upToIncludeDropdown', 'all'),
        _boolean('redactVisitorIp', 'false')
    ]


def build_server_tag_params(ctx: GenerationContext, tag: Dict, server_type: str, tag_name: str) -> List[Dict]:
    """Parameters of a generated server tag, wired to the constants created earlier"""
    tag_type = tag.get('type')

    if tag_type == 'fbq':
        return [
            _constant_reference(ctx, tag_name, 'accessToken', ctx.find_constant_name('facebook access token'),
                                '[HIER_EINFUEGEN: Facebook Access Token]'),
            _constant_reference(ctx, tag_name, 'pixelId', ctx.find_constant_name('facebook pixel id'),
                                '[HIER_EINFUEGEN: Facebook Pixel ID]')
        ]
    if tag_type == 'lnq':
        return [
            _constant_reference(ctx, tag_name, 'accessToken', ctx.find_constant_name('linkedin access token'),
                                '[HIER_EINFUEGEN: LinkedIn Access Token]'),
            _constant_reference(ctx, tag_name, 'conversionRuleUrn',
                                ctx.find_constant_name('linkedin conversion rule urn'),
                                '[HIER_EINFUEGEN: LinkedIn Conversion Rule URN]'),
            _template('eventDataGroup', 'conversion')
        ]
    if tag_type == 'ms':
        return [
            _constant_reference(ctx, tag_name, 'uetTagId', ctx.find_constant_name('microsoft uet tag id'),
                                '[HIER_EINFUEGEN: Microsoft UET Tag ID]')
        ]

    if server_type == 'sgtmadsct':
        return [
            _constant_reference(ctx, tag_name, 'conversionId',
                                ctx.constant_for(get_parameter_value(tag, 'conversionId')),
                                '[HIER_EINFUEGEN: Google Ads Conversion ID]'),
            _constant_reference(ctx, tag_name, 'conversionLabel',
                                ctx.constant_for(get_parameter_value(tag, 'conversionLabel')),
                                '[HIER_EINFUEGEN: Conversion Label]'),
            _boolean('enableConversionLinker', 'true'),
            _boolean('rdp', 'false')
        ]
    if server_type == 'sgtmadsremarket':
        return [
            _constant_reference(ctx, tag_name, 'conversionId',
                                ctx.constant_for(get_parameter_value(tag, 'conversionId')),
                                '[HIER_EINFUEGEN: Google Ads Conversion ID]'),
            _boolean('enableConversionLinker', 'true'),
            _boolean('enableDynamicRemarketing', 'true'),
            _boolean('rdp', 'false')
        ]

    measurement_id = get_parameter_value(tag, 'measurementId') or get_parameter_value(tag, 'gaSettings')
    return _ga4_params(ctx, tag_name, ctx.constant_for(measurement_id))


def generate_tags(ctx: GenerationContext, container: GTMContainer, catalog: TemplateCatalog) -> List[Dict]:
    all_events_trigger_id = ctx.event_to_trigger.get(ALL_EVENTS_KEY)

    if ctx.flag('hasGA4Tags') and all_events_trigger_id:
        name = 'SSG - GA4 - All Events'
        _create_tag_shell(ctx, name, 'sgtmgaaw',
                          _ga4_params(ctx, name, ctx.find_constant_name('ga4 measurement id')),
                          all_events_trigger_id, ctx.folder_id('GA4'))

    if ctx.flag('hasGoogleAds') and all_events_trigger_id:
        _create_tag_shell(ctx, 'SSG - Conversion Linker', 'sgtmadscl',
                          [_boolean('enableLinkerParams', 'false'), _boolean('enableCookieOverrides', 'false')],
                          all_events_trigger_id, ctx.folder_id('Google Ads'))

    for tag in ctx.tags_to_migrate:
        event_name = get_event_name_from_trigger(resolve_firing_trigger(container, tag))
        trigger_id = ctx.event_to_trigger.get(event_name)
        if not trigger_id:
            continue

        tag_type = tag.get('type')
        server_type = map_tag_type(tag_type, catalog)
        if server_type is None:
            server_type = DEFAULT_SERVER_TAG_TYPE
            ctx.warn(f"Tag '{tag.get('name')}' ({tag_type}) has no server tag type; "
                     f"using default type {DEFAULT_SERVER_TAG_TYPE}")

        server_name = f'SSG - {get_vendor_label(tag_type)} - {event_name}'
        folder_name = TAG_TYPE_FOLDERS.get(tag_type)
        parameters = build_server_tag_params(ctx, tag, server_type, server_name)
        _create_tag_shell(ctx, server_name, server_type, parameters, trigger_id,
                          ctx.folder_id(folder_name) if folder_name else None)

        ctx.tag_mapping.append({
            'original': tag.get('name'),
            'serverSide': server_name,
            'type': server_type
        })
    return ctx.tags


def assemble_export(ctx: GenerationContext, container_name: str, export_time: str) -> Dict:
    return {
        'exportFormatVersion': 2,
        'exportTime': export_time,
        'containerVersion': {
            'path': 'accounts/0/containers/0/versions/0',
            'accountId': '0',
            'containerId': '0',
            'containerVersionId': '0',
            'fingerprint': ctx.fingerprint,
            'tagManagerUrl': TAG_MANAGER_URL,
            'container': {
                'path': 'accounts/0/containers/0',
                'accountId': '0',
                'containerId': '0',
                'name': f'[SSG] {container_name}',
                'publicId': 'GTM-XXXXXX',
                'usageContext': ['SERVER'],
                'fingerprint': ctx.fingerprint,
                'tagManagerUrl': TAG_MANAGER_URL,
                'features': dict(CONTAINER_FEATURES),
                'tagIds': ['GTM-XXXXXX']
            },
            'tag': ctx.tags,
            'trigger': ctx.triggers,
            'variable': ctx.constants + ctx.event_data_variables,
            'folder': ctx.folders,
            'client': ctx.clients,
            'builtInVariable': [
                {'accountId': '0', 'containerId': '0', 'type': 'EVENT_NAME', 'name': 'Event Name'},
                {'accountId': '0', 'containerId': '0', 'type': 'CLIENT_NAME', 'name': 'Client Name'}
            ],
            'customTemplate': ctx.templates
        }
    }


def upsert_parameter(tag: Dict, key: str, value: str):
    """Set a TEMPLATE parameter, updating an existing entry instead of appending a second one"""
    if not isinstance(tag.get('parameter'), list):
        tag['parameter'] = []
    for param in tag['parameter']:
        if isinstance(param, dict) and param.get('key') == key:
            param['value'] = value
            return
    tag['parameter'].append(_template(key, value))


class GTMServerSideGenerator:
    def __init__(self, container: GTMContainer, analysis: Dict, selected_vendors=None,
                 catalog: TemplateCatalog = None, now: datetime = None, transport_url: str = None):
        self.container = container
        self.analysis = analysis or {}
        if selected_vendors is None:
            selected_vendors = as_list(self.analysis.get('selectedVendors'))
        self.selected_vendors = set(selected_vendors)
        self.catalog = catalog or EMPTY_CATALOG
        self.transport_url = transport_url

        # One clock read per generator
        moment = now or datetime.now()
        self.fingerprint = str(int(moment.timestamp() * 1000))
        self.export_time = moment.strftime('%Y-%m-%d %H:%M:%S')

        self._last_context = None

    def _new_context(self) -> GenerationContext:
        selected = apply_vendor_selection(self.analysis, self.selected_vendors)
        return GenerationContext(
            analysis=selected,
            tags_to_migrate=selected['tagsToMigrate'],
            fingerprint=self.fingerprint
        )

    def generate(self) -> Dict:
        """Build the server container export document"""
        ctx = self._new_context()

        generate_folders(ctx)
        generate_constant_variables(ctx, self.transport_url)
        generate_event_data_variables(ctx)
        generate_custom_templates(ctx, self.catalog, self.selected_vendors)
        generate_clients(ctx)
        generate_triggers(ctx, self.container)
        generate_tags(ctx, self.container, self.catalog)

        self._last_context = ctx
        logger.info(
            f"Generated server container: {len(ctx.tags)} tags, {len(ctx.triggers)} triggers, "
            f"{len(ctx.constants) + len(ctx.event_data_variables)} variables, {len(ctx.warnings)} warnings"
        )
        return assemble_export(ctx, self.container.container_info['name'], self.export_time)

    def generate_modified_client_container(self) -> Dict:
        """
        Copy of the client container whose GA4 tags send to the tagging
        server: ``transport_url`` on configuration tags and, when one
        exists, ``server_container_url`` on event tags. Running it on its
        own output changes nothing.
        """
        container = deep_clone(self.container.gtm_data)
        tags = [t for t in as_list(container['containerVersion'].get('tag')) if isinstance(t, dict)]
        url = self.transport_url or TRANSPORT_URL_PLACEHOLDER

        config_tags = [t for t in tags if t.get('type') == 'gawc']
        for tag in config_tags:
            upsert_parameter(tag, 'transport_url', url)
        if config_tags:
            for tag in tags:
                if tag.get('type') == 'gaawe':
                    upsert_parameter(tag, 'server_container_url', url)
        return container

    def get_summary(self) -> Dict:
        ctx = self._last_context
        if ctx is None:
            raise GeneratorError('get_summary', 'generate() must be called first')

        placeholders = [
            {'name': c['name'], 'placeholder': c['parameter'][0]['value']}
            for c in ctx.constants if is_placeholder(c['parameter'][0]['value'])
        ]
        placeholders.extend(ctx.placeholders)

        return {
            'tagsCreated': len(ctx.tags),
            'triggersCreated': len(ctx.triggers),
            'constantsCreated': len(ctx.constants),
            'eventDataVarsCreated': len(ctx.event_data_variables),
            'clientsCreated': len(ctx.clients),
            'templatesCreated': len(ctx.templates),
            'placeholders': placeholders,
            'tagMapping': ctx.tag_mapping,
            'warnings': list(ctx.warnings)
        }
