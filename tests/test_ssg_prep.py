"""Tests for the server-side readiness analysis and migration plan."""

from gtm_container import ALL_PAGES_TRIGGER_ID
from gtm_ssg_prep import (
    GTMServerSidePrep,
    get_readiness_grade,
    get_vendor_key_for_tag,
    is_tag_migratable,
    vendor_flags_for,
)
from gtm_builders import make_container, make_tag, make_trigger, make_variable


class TestMigratable:
    def test_known_vendor_types(self):
        assert is_tag_migratable({'type': 'gaawe'})
        assert is_tag_migratable({'type': 'fbq'})
        assert not is_tag_migratable({'type': 'cmp'})

    def test_custom_html_only_with_network_calls(self):
        beacon = make_tag(1, 'HTML - Beacon', 'html', html='<script>navigator.sendBeacon("/c")</script>')
        dom = make_tag(2, 'HTML - Banner', 'html', html='<div>hello</div>')

        assert is_tag_migratable(beacon)
        assert not is_tag_migratable(dom)


class TestVendors:
    def test_vendor_key_by_type_or_name(self):
        assert get_vendor_key_for_tag({'type': 'awct', 'name': 'x'}) == 'google_ads'
        assert get_vendor_key_for_tag({'type': 'html', 'name': 'Bing UET'}) == 'microsoft_ads'
        assert get_vendor_key_for_tag({'type': 'html', 'name': 'Hotjar'}) is None

    def test_flags(self):
        flags = vendor_flags_for([{'type': 'gawc'}, {'type': 'lnq'}])

        assert flags['hasGA4'] is True
        assert flags['hasLinkedIn'] is True
        assert flags['hasOtherMarketing'] is True
        assert flags['hasGoogleAds'] is False

    def test_detect_vendors_in_first_seen_order(self, vendor_container):
        detected = GTMServerSidePrep(vendor_container).detect_vendors()

        assert [v['key'] for v in detected] == ['ga4', 'google_ads', 'facebook']


class TestAnalysis:
    def test_split(self, vendor_analysis):
        assert [t['name'] for t in vendor_analysis['tagsToMigrate']] == [
            'GA4 - Config', 'Ads - Purchase', 'Meta - Purchase'
        ]
        assert [t['name'] for t in vendor_analysis['clientOnlyTags']] == ['Consent Banner']
        assert vendor_analysis['hasGA4Tags'] is True
        assert vendor_analysis['needsGa4Client'] is True

    def test_variables_referenced_by_migrated_tags(self):
        container = make_container(
            tags=[make_tag(1, 'GA4 - Config', 'gawc', firing=[ALL_PAGES_TRIGGER_ID], measurementId='{{GA4 ID}}')],
            variables=[make_variable(1, 'GA4 ID', 'G-1'), make_variable(2, 'Unrelated', 'x')],
        )

        analysis = GTMServerSidePrep(container).analyze_container_for_ssg()

        assert [v['name'] for v in analysis['variablesToMigrate']] == ['GA4 ID']

    def test_readiness_score(self):
        container = make_container(
            tags=[make_tag(1, 'GA4 - Purchase', 'gaawe', firing=[10])],
            triggers=[make_trigger(10, 'CE - purchase', event='purchase')],
        )

        analysis = GTMServerSidePrep(container).analyze_container_for_ssg()

        # all tags migratable (40) + GA4 (20) + custom event trigger (15)
        assert analysis['readinessScore'] == 75
        assert get_readiness_grade(75) == 'B'

    def test_empty_container(self):
        analysis = GTMServerSidePrep(make_container()).analyze_container_for_ssg()

        assert analysis['readinessScore'] == 0
        assert analysis['needsGa4Client'] is False


class TestMigrationPlan:
    def test_plan_sections(self, vendor_container):
        plan = GTMServerSidePrep(vendor_container).generate_migration_plan()

        assert set(plan) == {'readiness', 'migrationSteps', 'tags', 'triggers', 'variables', 'clients',
                             'estimatedEffort', 'vendorsDetected'}
        assert [s['step'] for s in plan['migrationSteps']] == list(range(1, 8))
        assert plan['tags']['keepClientSide'][0]['reason'] == 'Custom HTML with DOM manipulation'
        assert [c['type'] for c in plan['clients'] if c['required']] == ['GA4', 'GOOGLE_ADS']

    def test_effort_breakdown(self, vendor_container, vendor_analysis):
        effort = GTMServerSidePrep(vendor_container).estimate_effort(vendor_analysis)

        # 2 + 1 + 2 clients * 0.5 + 3 tags * 0.25 + 1 trigger * 0.15 + 4
        assert effort['total'] == 9
        assert effort['timeline']['minimal'] == '2 days'
