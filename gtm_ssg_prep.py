"""
Server-side GTM readiness analysis.

Decides which client-side tags, triggers and variables can move to a
server container, which vendors are involved, and how much work the
migration is. The analysis dict produced here is the input contract of
GTMServerSideGenerator.
"""

import math
from typing import Dict, List, Optional

from loguru import logger

from gtm_container import GTMContainer
from gtm_utils import get_parameter_value, is_built_in

VENDOR_CATALOG = [
    {'key': 'ga4', 'label': 'GA4', 'supported': True, 'tagTypes': ['gawc', 'gaawe'], 'nameHints': ['ga4']},
    {'key': 'google_ads', 'label': 'Google Ads', 'supported': True, 'tagTypes': ['awct', 'adsct'],
     'nameHints': ['ads', 'google ads']},
    {'key': 'floodlight', 'label': 'Floodlight', 'supported': True, 'tagTypes': ['flc', 'fls'],
     'nameHints': ['floodlight']},
    {'key': 'facebook', 'label': 'Facebook', 'supported': True, 'tagTypes': ['fbq'], 'nameHints': ['facebook', 'meta']},
    {'key': 'linkedin', 'label': 'LinkedIn', 'supported': True, 'tagTypes': ['lnq'], 'nameHints': ['linkedin']},
    {'key': 'microsoft_ads', 'label': 'Microsoft Ads', 'supported': True, 'tagTypes': ['ms'],
     'nameHints': ['microsoft', 'bing']},
]

MIGRATABLE_TAG_TYPES = ('gaawe', 'gawc', 'awct', 'adsct', 'flc', 'fls', 'img', 'fbq', 'lnq', 'ms')
NETWORK_CALL_MARKERS = ('fetch(', 'XMLHttpRequest', 'sendBeacon')

SSG_COMPATIBLE_TRIGGER_TYPES = ('PAGE_VIEW', 'CUSTOM_EVENT', 'LINK_CLICK', 'FORM_SUBMIT', 'SCROLL', 'TIMER')
CLIENT_ONLY_TRIGGER_TYPES = ('CLICK', 'SUBMIT', 'DOM_READY', 'WINDOW_LOADED', 'ELEMENT_VISIBLE')

TAG_MIGRATION_PRIORITIES = {
    'gawc': 'critical',
    'gaawe': 'high',
    'awct': 'high',
    'adsct': 'medium',
    'flc': 'high',
    'fls': 'high'
}

SERVER_BUILT_IN_VARIABLES = [
    'Client Name',
    'Client ID',
    'Event Name',
    'Event Data',
    'Request URI',
    'Request Path',
    'Query Parameters',
    'Server User Agent',
    'Client IP (anonymized)'
]

# Analysis flags keyed by the tag type that sets them
VENDOR_FLAGS = {
    'hasGA4': ('gawc', 'gaawe'),
    'hasGoogleAds': ('awct', 'adsct'),
    'hasOtherMarketing': ('fbq', 'lnq', 'ms'),
    'hasFacebook': ('fbq',),
    'hasLinkedIn': ('lnq',),
    'hasMicrosoftAds': ('ms',),
}


def get_vendor_key_for_tag(tag: Dict, vendor_catalog: List[Dict] = None) -> Optional[str]:
    """First catalogue vendor whose tag types or name hints match the tag"""
    name = (tag.get('name') or '').lower() if isinstance(tag.get('name'), str) else ''
    for vendor in vendor_catalog or VENDOR_CATALOG:
        if tag.get('type') in vendor['tagTypes']:
            return vendor['key']
        if any(hint in name for hint in vendor['nameHints']):
            return vendor['key']
    return None


def is_tag_migratable(tag: Dict) -> bool:
    if tag.get('type') == 'html':
        html = get_parameter_value(tag, 'html', '')
        return isinstance(html, str) and any(marker in html for marker in NETWORK_CALL_MARKERS)
    return tag.get('type') in MIGRATABLE_TAG_TYPES


def is_trigger_migratable(trigger: Dict) -> bool:
    if trigger.get('type') in CLIENT_ONLY_TRIGGER_TYPES:
        return False
    return trigger.get('type') in SSG_COMPATIBLE_TRIGGER_TYPES


def vendor_flags_for(tags: List[Dict]) -> Dict[str, bool]:
    types = {t.get('type') for t in tags}
    return {flag: any(tag_type in types for tag_type in tag_types) for flag, tag_types in VENDOR_FLAGS.items()}


def get_readiness_grade(score: float) -> str:
    if score >= 80:
        return 'A'
    if score >= 60:
        return 'B'
    if score >= 40:
        return 'C'
    if score >= 20:
        return 'D'
    return 'F'


def get_readiness_assessment(score: float) -> str:
    if score >= 80:
        return 'The container is very well prepared for a server-side migration.'
    if score >= 60:
        return 'The container is well prepared for a migration. Some adjustments are required.'
    if score >= 40:
        return 'The container needs some preparation before migrating to server-side GTM.'
    return 'The container is not well prepared for server-side GTM. Extensive adjustments are required.'


class GTMServerSidePrep:
    def __init__(self, container: GTMContainer):
        self.container = container

    def detect_vendors(self) -> List[Dict]:
        """Catalogue vendors present among the container's tags, first-seen order"""
        detected = {}
        for tag in self.container.tags:
            vendor_key = get_vendor_key_for_tag(tag)
            if vendor_key and vendor_key not in detected:
                detected[vendor_key] = next(v for v in VENDOR_CATALOG if v['key'] == vendor_key)
        return list(detected.values())

    def analyze_container_for_ssg(self) -> Dict:
        """Split the container into server-side candidates and client-only leftovers"""
        analysis = {
            'tagsToMigrate': [],
            'clientOnlyTags': [],
            'triggersToMigrate': [],
            'complexTriggers': [],
            'variablesToMigrate': [],
            'readinessScore': 0,
            'vendorsDetected': []
        }

        for tag in self.container.tags:
            if is_tag_migratable(tag):
                analysis['tagsToMigrate'].append(tag)
            else:
                analysis['clientOnlyTags'].append(tag)

        analysis.update(vendor_flags_for(self.container.tags))
        analysis['hasGA4Tags'] = any(t.get('type') in VENDOR_FLAGS['hasGA4'] for t in analysis['tagsToMigrate'])
        analysis['needsGa4Client'] = len(analysis['tagsToMigrate']) > 0

        for trigger in self.container.triggers:
            if is_trigger_migratable(trigger):
                analysis['triggersToMigrate'].append(trigger)
            else:
                analysis['complexTriggers'].append(trigger)

        analysis['variablesToMigrate'] = self.get_variables_to_migrate(analysis['tagsToMigrate'])
        analysis['readinessScore'] = self.calculate_readiness_score(analysis)
        analysis['vendorsDetected'] = self.detect_vendors()

        logger.info(
            f"SSG analysis: {len(analysis['tagsToMigrate'])} tags to migrate, "
            f"{len(analysis['clientOnlyTags'])} client-only, readiness {analysis['readinessScore']}"
        )
        return analysis

    def get_variables_to_migrate(self, tags_to_migrate: List[Dict]) -> List[Dict]:
        """User variables referenced by at least one migratable tag"""
        referenced = set()
        for tag in tags_to_migrate:
            referenced.update(self.container.get_references_for('tag', tag.get('name', '')))
        return [
            v for v in self.container.variables
            if not is_built_in(v) and v.get('name') in referenced
        ]

    def calculate_readiness_score(self, analysis: Dict) -> int:
        score = 0.0
        total_tags = len(analysis['tagsToMigrate']) + len(analysis['clientOnlyTags'])
        if total_tags > 0:
            score += len(analysis['tagsToMigrate']) / total_tags * 40
        if analysis.get('hasGA4'):
            score += 20
        if any(t.get('type') == 'CUSTOM_EVENT' for t in analysis['triggersToMigrate']):
            score += 15
        if analysis['variablesToMigrate']:
            score += 10
        if analysis.get('hasGoogleAds'):
            score += 10
        if len(analysis['clientOnlyTags']) > 10:
            score -= min(len(analysis['clientOnlyTags']), 20)
        return max(0, min(100, int(math.floor(score + 0.5))))

    def get_required_clients(self, analysis: Dict) -> List[Dict]:
        clients = []
        if analysis.get('hasGA4'):
            clients.append({'name': 'Google Analytics 4', 'type': 'GA4', 'required': True, 'priority': 'critical',
                            'description': 'GA4 client that forwards events'})
        if analysis.get('hasGoogleAds'):
            clients.append({'name': 'Google Ads', 'type': 'GOOGLE_ADS', 'required': True, 'priority': 'high',
                            'description': 'Google Ads client for conversion tracking'})
        if analysis.get('hasOtherMarketing'):
            clients.append({'name': 'HTTP', 'type': 'HTTP', 'required': False, 'priority': 'medium',
                            'description': 'Generic HTTP client for other marketing tags'})
        clients.append({'name': 'Google Tag', 'type': 'GOOGLE_TAG', 'required': False, 'priority': 'low',
                        'description': 'For Google tag integrations'})
        clients.append({'name': 'Conversion Linker', 'type': 'CONVERSION_LINKER', 'required': False,
                        'priority': 'medium', 'description': 'For cross-domain tracking'})
        return clients

    @staticmethod
    def get_client_side_reason(tag: Dict) -> str:
        name = (tag.get('name') or '').lower()
        tag_type = tag.get('type') or ''
        if tag_type == 'html':
            return 'Custom HTML with DOM manipulation'
        if tag_type == 'cmp' or 'consent' in name:
            return 'Consent management needs browser APIs'
        if tag_type == 'a' or 'optimizely' in name or 'ab test' in name:
            return 'A/B testing must run client-side'
        if tag_type.startswith('k'):
            return 'Built-in tag'
        return 'Requires browser context'

    @staticmethod
    def get_suggested_client(tag: Dict) -> str:
        if tag.get('type') in ('gaawe', 'gawc', 'flc', 'fls'):
            return 'Google Analytics 4'
        if tag.get('type') in ('awct', 'adsct'):
            return 'Google Ads'
        return 'HTTP'

    @staticmethod
    def get_trigger_migration_note(trigger: Dict) -> str:
        notes = {
            'CUSTOM_EVENT': 'Available automatically as a server event trigger',
            'PAGE_VIEW': 'Client page views arrive as server-side page_view events',
            'LINK_CLICK': 'Link click events must be sent by the client',
            'FORM_SUBMIT': 'Form submit events must be sent by the client'
        }
        trigger_type = trigger.get('type')
        if isinstance(trigger_type, str) and trigger_type in notes:
            return notes[trigger_type]
        return 'Can be used as an event trigger'

    def estimate_effort(self, analysis: Dict) -> Dict:
        required_clients = [c for c in self.get_required_clients(analysis) if c['required']]
        hours = {
            'setup': 2,
            'clientChanges': 1,
            'clients': 0.5 * len(required_clients),
            'tags': 0.25 * len(analysis['tagsToMigrate']),
            'triggers': 0.15 * len(analysis['triggersToMigrate']),
            'variables': 0.1 * len(analysis['variablesToMigrate']),
            'testing': 4
        }
        total = sum(hours.values())
        return {
            'total': math.ceil(total),
            'breakdown': hours,
            'byRole': {
                'GTM Specialist': math.ceil(total * 0.7),
                'Developer': math.ceil(total * 0.2),
                'QA': math.ceil(total * 0.1)
            },
            'timeline': {
                'minimal': f'{math.ceil(total / 8)} days',
                'withTesting': f'{math.ceil((total + 8) / 8)} days',
                'withBuffer': f'{math.ceil((total + 16) / 8)} days'
            }
        }

    def get_migration_steps(self, analysis: Dict) -> List[Dict]:
        required = len([c for c in self.get_required_clients(analysis) if c['required']])
        tag_count = len(analysis['tagsToMigrate'])
        steps = [
            ('Create the server container', 'Create a new server container in Google Tag Manager', '15 minutes'),
            ('Provision the tagging server', 'Deploy the server container on Cloud Run or App Engine', '30-60 minutes'),
            ('Adjust the client container', 'Add the transport URL to the GA4 configuration tag', '1-2 hours'),
            ('Set up server clients', f'Create {required} required clients in the server container', '30-60 minutes'),
            ('Migrate tags', f'Move {tag_count} tags to the server container', f'{math.ceil(tag_count / 5)} hours'),
            ('Test and validate', 'Verify every event in server preview mode and in the vendor tools', '2-4 hours'),
            ('Remove client tags', 'Pause or delete the migrated client-side tags', '30 minutes'),
        ]
        return [
            {'step': index, 'title': title, 'description': description, 'duration': duration}
            for index, (title, description, duration) in enumerate(steps, start=1)
        ]

    def generate_migration_plan(self) -> Dict:
        analysis = self.analyze_container_for_ssg()
        score = analysis['readinessScore']
        return {
            'readiness': {
                'score': score,
                'grade': get_readiness_grade(score),
                'assessment': get_readiness_assessment(score)
            },
            'migrationSteps': self.get_migration_steps(analysis),
            'tags': {
                'migrate': [
                    {
                        'name': t.get('name'),
                        'type': t.get('type'),
                        'priority': TAG_MIGRATION_PRIORITIES.get(t.get('type'), 'medium'),
                        'client': self.get_suggested_client(t)
                    }
                    for t in analysis['tagsToMigrate']
                ],
                'keepClientSide': [
                    {'name': t.get('name'), 'type': t.get('type'), 'reason': self.get_client_side_reason(t)}
                    for t in analysis['clientOnlyTags']
                ]
            },
            'triggers': {
                'migrate': [
                    {'name': t.get('name'), 'type': t.get('type'), 'note': self.get_trigger_migration_note(t)}
                    for t in analysis['triggersToMigrate']
                ]
            },
            'variables': {
                'migrate': [{'name': v.get('name'), 'type': v.get('type')} for v in analysis['variablesToMigrate']],
                'serverBuiltIn': SERVER_BUILT_IN_VARIABLES
            },
            'clients': self.get_required_clients(analysis),
            'estimatedEffort': self.estimate_effort(analysis),
            'vendorsDetected': analysis['vendorsDetected']
        }
