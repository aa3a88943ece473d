"""Tests for the server-side container generator."""

import base64
import copy
import json

import pytest

from gtm_container import ALL_PAGES_TRIGGER_ID, GTMContainer
from gtm_exceptions import GeneratorError
from gtm_ssg_generator import (
    EVENT_DATA_KEYS,
    TRANSPORT_URL_PLACEHOLDER,
    GTMServerSideGenerator,
    apply_vendor_selection,
    conversion_label_constant_name,
    get_event_name_from_trigger,
    map_tag_type,
)
from gtm_ssg_prep import GTMServerSidePrep
from gtm_template_catalog import EMPTY_CATALOG, StaticTemplateCatalog, TemplateDefinition
from gtm_builders import make_container, make_tag, make_trigger


def version_of(export):
    return export['containerVersion']


def names(entities):
    return [e['name'] for e in entities]


def param(entity, key):
    for p in entity['parameter']:
        if p['key'] == key:
            return p['value']
    return None


def generate(container, now, **kwargs):
    analysis = GTMServerSidePrep(container).analyze_container_for_ssg()
    generator = GTMServerSideGenerator(container, analysis, now=now, **kwargs)
    return generator, generator.generate()


class TestEventNames:
    def test_missing_trigger(self):
        assert get_event_name_from_trigger(None) == 'unknown_event'

    def test_page_view(self):
        assert get_event_name_from_trigger(make_trigger(1, 'Anything', 'PAGE_VIEW')) == 'page_view'

    def test_custom_event_uses_filter_value(self):
        assert get_event_name_from_trigger(make_trigger(1, 'CE - Checkout', event='begin_checkout')) == \
            'begin_checkout'

    def test_custom_event_without_filter_falls_back_to_slug(self):
        assert get_event_name_from_trigger(make_trigger(1, 'CE - Sign Up!')) == 'ce_sign_up'

    def test_fixed_names(self):
        assert get_event_name_from_trigger(make_trigger(1, 'x', 'LINK_CLICK')) == 'click'
        assert get_event_name_from_trigger(make_trigger(1, 'x', 'FORM_SUBMIT')) == 'form_submit'
        assert get_event_name_from_trigger(make_trigger(1, 'x', 'TIMER')) == 'timer'

    def test_other_types_use_slug(self):
        trigger = make_trigger(1, 'Scroll Depth 50%', 'ELEMENT_VISIBILITY')
        assert get_event_name_from_trigger(trigger) == 'scroll_depth_50'

    def test_non_string_filter_value_falls_back_to_slug(self):
        trigger = make_trigger(1, 'CE - Purchase', event=['purchase'])
        assert get_event_name_from_trigger(trigger) == 'ce_purchase'
        trigger = make_trigger(1, 'CE - Purchase', event=42)
        assert get_event_name_from_trigger(trigger) == 'ce_purchase'

    def test_non_string_filter_value_does_not_break_generation(self, fixed_now):
        container = make_container(
            tags=[make_tag(1, 'GA4 - Purchase', 'gaawe', firing=[11], measurementId='G-ABC123')],
            triggers=[make_trigger(11, 'CE - Purchase', event=['purchase'])],
        )

        _, export = generate(container, fixed_now)

        assert 'SSG - GA4 - ce_purchase' in names(version_of(export)['tag'])


class TestGA4Scenario:
    def test_single_measurement_constant(self, ga4_container, fixed_now):
        _, export = generate(ga4_container, fixed_now)

        constants = [v for v in version_of(export)['variable'] if v['type'] == 'c']
        ga4_constants = [c for c in constants if c['name'] == 'const - ga4 measurement id']

        assert len(ga4_constants) == 1
        assert param(ga4_constants[0], 'value') == 'G-ABC123'

    def test_single_all_events_trigger(self, ga4_container, fixed_now):
        _, export = generate(ga4_container, fixed_now)

        triggers = version_of(export)['trigger']
        all_events = [t for t in triggers if t['name'] == 'All Events - GA4']

        assert len(all_events) == 1
        assert all_events[0]['customEventFilter'][0]['type'] == 'MATCH_REGEX'
        assert names(triggers) == ['All Events - GA4', '[GA4] page_view', '[GA4] purchase']

    def test_base_tag_references_trigger_and_constant(self, ga4_container, fixed_now):
        _, export = generate(ga4_container, fixed_now)
        version = version_of(export)

        all_events_id = next(t['triggerId'] for t in version['trigger'] if t['name'] == 'All Events - GA4')
        base_tags = [t for t in version['tag'] if t['name'] == 'SSG - GA4 - All Events']

        assert len(base_tags) == 1
        assert base_tags[0]['firingTriggerId'] == [all_events_id]
        assert param(base_tags[0], 'measurementId') == '{{const - ga4 measurement id}}'

    def test_migrated_tags_share_the_constant(self, ga4_container, fixed_now):
        generator, export = generate(ga4_container, fixed_now)

        migrated = [t for t in version_of(export)['tag'] if t['name'] != 'SSG - GA4 - All Events']

        assert names(migrated) == ['SSG - GA4 - page_view', 'SSG - GA4 - purchase']
        assert {param(t, 'measurementId') for t in migrated} == {'{{const - ga4 measurement id}}'}
        assert [m['original'] for m in generator.get_summary()['tagMapping']] == ['GA4 - Config', 'GA4 - Purchase']

    def test_export_shape(self, ga4_container, fixed_now):
        _, export = generate(ga4_container, fixed_now)
        version = version_of(export)

        assert export['exportFormatVersion'] == 2
        assert export['exportTime'] == '2024-01-15 12:30:45'
        assert version['container']['name'] == '[SSG] Test Container'
        assert version['container']['usageContext'] == ['SERVER']
        assert version['container']['features']['supportClients'] is True
        assert names(version['client']) == ['GA4']
        assert [v['type'] for v in version['builtInVariable']] == ['EVENT_NAME', 'CLIENT_NAME']
        assert len([v for v in version['variable'] if v['type'] == 'ed']) == len(EVENT_DATA_KEYS)

    def test_fingerprint_is_shared(self, ga4_container, fixed_now):
        _, export = generate(ga4_container, fixed_now)
        version = version_of(export)
        expected = str(int(fixed_now.timestamp() * 1000))

        assert version['fingerprint'] == expected
        assert {t['fingerprint'] for t in version['tag'] + version['trigger'] + version['variable']} == {expected}


class TestDeterminism:
    def test_repeated_generate_is_identical(self, ga4_container, fixed_now):
        generator, first = generate(ga4_container, fixed_now)
        second = generator.generate()

        assert json.dumps(first) == json.dumps(second)

    def test_separate_generators_agree(self, vendor_container, vendor_analysis, fixed_now):
        first = GTMServerSideGenerator(vendor_container, vendor_analysis, now=fixed_now).generate()
        second = GTMServerSideGenerator(vendor_container, vendor_analysis, now=fixed_now).generate()

        assert json.dumps(first) == json.dumps(second)

    def test_ids_are_sequential_per_type(self, vendor_container, fixed_now):
        _, export = generate(vendor_container, fixed_now)
        version = version_of(export)

        for key, id_field in (('tag', 'tagId'), ('trigger', 'triggerId'), ('variable', 'variableId'),
                              ('folder', 'folderId'), ('client', 'clientId')):
            ids = [e[id_field] for e in version[key]]
            assert ids == [str(i) for i in range(1, len(ids) + 1)], key

    def test_analysis_is_not_modified(self, vendor_container, vendor_analysis, fixed_now):
        before = copy.deepcopy(vendor_analysis)

        GTMServerSideGenerator(vendor_container, vendor_analysis, selected_vendors=['google_ads'],
                               now=fixed_now).generate()

        assert vendor_analysis == before


class TestConstants:
    def test_distinct_values_get_numbered_names(self, fixed_now):
        container = make_container(tags=[
            make_tag(1, 'GA4 - One', 'gawc', firing=[ALL_PAGES_TRIGGER_ID], measurementId='G-ONE'),
            make_tag(2, 'GA4 - Two', 'gawc', firing=[ALL_PAGES_TRIGGER_ID], measurementId='G-TWO'),
        ])

        generator, export = generate(container, fixed_now)
        constants = {c['name']: param(c, 'value') for c in version_of(export)['variable'] if c['type'] == 'c'}

        assert constants['const - ga4 measurement id'] == 'G-ONE'
        assert constants['const - ga4 measurement id 2'] == 'G-TWO'

    def test_variable_reference_becomes_placeholder(self, fixed_now):
        container = make_container(tags=[
            make_tag(1, 'GA4 - Config', 'gawc', firing=[ALL_PAGES_TRIGGER_ID], measurementId='{{GA4 ID}}'),
        ])

        generator, export = generate(container, fixed_now, transport_url='https://sgtm.example.com')
        constant = next(c for c in version_of(export)['variable'] if c['name'] == 'const - ga4 measurement id')
        placeholders = generator.get_summary()['placeholders']

        assert param(constant, 'value').startswith('[HIER_EINFUEGEN:')
        assert names(placeholders) == ['const - ga4 measurement id']

    def test_google_ads_constants(self, vendor_container, fixed_now):
        _, export = generate(vendor_container, fixed_now)
        version = version_of(export)
        constants = {c['name']: param(c, 'value') for c in version['variable'] if c['type'] == 'c'}
        ads_tag = next(t for t in version['tag'] if t['type'] == 'sgtmadsct')

        assert constants['const - google ads conversion id'] == 'AW-111'
        assert constants['const - google ads ads purchase conversion label'] == 'abcLabel'
        assert param(ads_tag, 'conversionId') == '{{const - google ads conversion id}}'
        assert param(ads_tag, 'conversionLabel') == '{{const - google ads ads purchase conversion label}}'

    def test_conversion_label_name(self):
        assert conversion_label_constant_name({'name': 'Ads - Lead (Form)!', 'type': 'awct'}) == \
            'const - google ads ads lead form conversion label'
        assert conversion_label_constant_name({'name': '', 'type': 'adsct'}) == \
            'const - google ads remarketing conversion label'

    def test_transport_url(self, ga4_container, fixed_now):
        generator, export = generate(ga4_container, fixed_now)
        constant = next(c for c in version_of(export)['variable'] if c['name'] == 'const - transport url')

        assert param(constant, 'value') == TRANSPORT_URL_PLACEHOLDER
        assert 'const - transport url' in names(generator.get_summary()['placeholders'])

        generator, export = generate(ga4_container, fixed_now, transport_url='https://sgtm.example.com')
        constant = next(c for c in version_of(export)['variable'] if c['name'] == 'const - transport url')

        assert param(constant, 'value') == 'https://sgtm.example.com'
        assert generator.get_summary()['placeholders'] == []


class TestVendors:
    def test_folders_follow_vendor_flags(self, vendor_container, fixed_now):
        _, export = generate(vendor_container, fixed_now)

        assert names(version_of(export)['folder']) == ['Einstellungen', 'Event Data', 'GA4', 'Google Ads', 'Facebook']

    def test_selection_filters_tags_and_folders(self, vendor_container, vendor_analysis, fixed_now):
        generator = GTMServerSideGenerator(vendor_container, vendor_analysis, selected_vendors=['google_ads'],
                                           now=fixed_now)
        version = version_of(generator.generate())

        assert names(version['folder']) == ['Einstellungen', 'Event Data', 'Google Ads']
        assert names(version['tag']) == ['SSG - Conversion Linker', 'SSG - ADS - purchase']
        assert [c['name'] for c in version['variable'] if 'ga4' in c['name']] == []

    def test_selection_from_analysis(self, vendor_container, vendor_analysis, fixed_now):
        analysis = dict(vendor_analysis, selectedVendors=['ga4'])
        version = version_of(GTMServerSideGenerator(vendor_container, analysis, now=fixed_now).generate())

        assert names(version['folder']) == ['Einstellungen', 'Event Data', 'GA4']

    def test_apply_vendor_selection_recomputes_flags(self, vendor_analysis):
        selected = apply_vendor_selection(vendor_analysis, {'facebook'})

        assert [t['type'] for t in selected['tagsToMigrate']] == ['fbq']
        assert selected['hasFacebook'] is True
        assert selected['hasGA4'] is False
        assert selected['hasGoogleAds'] is False

    def test_unknown_vendor_selects_nothing(self, vendor_container, vendor_analysis, fixed_now):
        generator = GTMServerSideGenerator(vendor_container, vendor_analysis, selected_vendors=['tiktok'],
                                           now=fixed_now)
        version = version_of(generator.generate())

        assert names(version['folder']) == ['Einstellungen', 'Event Data']
        assert version['tag'] == []
        assert version['client'] == []


class TestTemplateCatalog:
    def test_catalog_template_is_emitted(self, vendor_container, fixed_now):
        catalog = StaticTemplateCatalog({
            'facebook': TemplateDefinition('cvt_123_fb', 'Facebook Conversions API',
                                           base64.b64encode(b'___INFO___').decode('ascii'))
        })

        generator, export = generate(vendor_container, fixed_now, catalog=catalog)
        version = version_of(export)
        fb_tag = next(t for t in version['tag'] if t['name'] == 'SSG - Facebook - purchase')

        assert names(version['customTemplate']) == ['Facebook Conversions API']
        assert version['customTemplate'][0]['templateData'] == '___INFO___'
        assert fb_tag['type'] == 'cvt_123_fb'
        assert param(fb_tag, 'accessToken') == '{{const - facebook access token}}'
        assert generator.get_summary()['warnings'] == []

    def test_catalog_miss_falls_back_with_warning(self, vendor_container, fixed_now):
        generator, export = generate(vendor_container, fixed_now, catalog=EMPTY_CATALOG)
        version = version_of(export)
        fb_tag = next(t for t in version['tag'] if t['name'] == 'SSG - Facebook - purchase')
        warnings = generator.get_summary()['warnings']

        assert version['customTemplate'] == []
        assert fb_tag['type'] == 'sgtmgaaw'
        assert len(warnings) == 2
        assert "'facebook'" in warnings[0]
        assert 'Meta - Purchase' in warnings[1]

    def test_non_ascii_template_data_is_dropped(self, vendor_container, fixed_now):
        catalog = StaticTemplateCatalog({
            'facebook': TemplateDefinition('cvt_123_fb', 'Facebook Conversions API', 'Vorlage für Meta')
        })

        _, export = generate(vendor_container, fixed_now, catalog=catalog)
        version = version_of(export)

        assert version['customTemplate'][0]['templateData'] == ''
        assert next(t for t in version['tag'] if t['name'] == 'SSG - Facebook - purchase')['type'] == 'cvt_123_fb'

    def test_map_tag_type(self):
        assert map_tag_type('gaawe', EMPTY_CATALOG) == 'sgtmgaaw'
        assert map_tag_type('awct', EMPTY_CATALOG) == 'sgtmadsct'
        assert map_tag_type('adsct', EMPTY_CATALOG) == 'sgtmadsremarket'
        assert map_tag_type('fbq', EMPTY_CATALOG) is None
        assert map_tag_type('unknown', EMPTY_CATALOG) is None


class TestClientContainer:
    def test_ga4_tags_point_at_tagging_server(self, ga4_container, ga4_analysis, fixed_now):
        generator = GTMServerSideGenerator(ga4_container, ga4_analysis, now=fixed_now,
                                           transport_url='https://sgtm.example.com')

        patched = generator.generate_modified_client_container()
        tags = {t['name']: t for t in version_of(patched)['tag']}

        assert param(tags['GA4 - Config'], 'transport_url') == 'https://sgtm.example.com'
        assert param(tags['GA4 - Purchase'], 'server_container_url') == 'https://sgtm.example.com'
        assert param(ga4_container.tags[0], 'transport_url') is None

    def test_patch_is_idempotent(self, ga4_container, ga4_analysis, fixed_now):
        first = GTMServerSideGenerator(ga4_container, ga4_analysis, now=fixed_now).generate_modified_client_container()
        patched_container = GTMContainer(first)
        second = GTMServerSideGenerator(patched_container, ga4_analysis, now=fixed_now) \
            .generate_modified_client_container()

        config_tag = next(t for t in version_of(second)['tag'] if t['type'] == 'gawc')
        keys = [p['key'] for p in config_tag['parameter']]

        assert keys.count('transport_url') == 1
        assert param(config_tag, 'transport_url') == TRANSPORT_URL_PLACEHOLDER
        assert first == second

    def test_event_tags_untouched_without_config_tag(self, fixed_now):
        container = make_container(tags=[make_tag(1, 'GA4 - Event', 'gaawe', firing=[ALL_PAGES_TRIGGER_ID])])
        analysis = GTMServerSidePrep(container).analyze_container_for_ssg()

        patched = GTMServerSideGenerator(container, analysis, now=fixed_now).generate_modified_client_container()

        assert param(version_of(patched)['tag'][0], 'server_container_url') is None


class TestSummary:
    def test_summary_before_generate(self, ga4_container, ga4_analysis):
        generator = GTMServerSideGenerator(ga4_container, ga4_analysis)

        with pytest.raises(GeneratorError, match="generate\\(\\) must be called first"):
            generator.get_summary()

    def test_counts(self, ga4_container, fixed_now):
        generator, _ = generate(ga4_container, fixed_now)
        summary = generator.get_summary()

        assert summary['tagsCreated'] == 3
        assert summary['triggersCreated'] == 3
        assert summary['constantsCreated'] == 2
        assert summary['eventDataVarsCreated'] == len(EVENT_DATA_KEYS)
        assert summary['clientsCreated'] == 1
        assert summary['templatesCreated'] == 0
