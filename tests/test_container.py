"""Tests for the container model: loading, references, duplicates and unused sets."""

import json

import pytest

from gtm_container import ALL_PAGES_TRIGGER_ID, GTMContainer
from gtm_exceptions import InvalidContainerError
from gtm_builders import make_container, make_export, make_tag, make_trigger, make_variable, template


class TestLoading:
    def test_rejects_non_object_root(self):
        with pytest.raises(InvalidContainerError, match="JSON object"):
            GTMContainer([])

    def test_rejects_missing_container_version(self):
        with pytest.raises(InvalidContainerError) as excinfo:
            GTMContainer({'exportFormatVersion': 2})
        assert excinfo.value.reason == "missing 'containerVersion'"

    def test_from_json_reports_invalid_json(self):
        with pytest.raises(InvalidContainerError, match="not valid JSON"):
            GTMContainer.from_json('{not json', source='broken.json')

    def test_load_keeps_source_path(self, tmp_path):
        path = tmp_path / 'export.json'
        path.write_text(json.dumps(make_export(name='Shop')), encoding='utf-8')

        container = GTMContainer.load(str(path))

        assert container.source == str(path)
        assert container.container_info['name'] == 'Shop'
        assert container.container_info['publicId'] == 'GTM-TEST1'

    def test_load_error_names_the_file(self, tmp_path):
        path = tmp_path / 'export.json'
        path.write_text('[]', encoding='utf-8')

        with pytest.raises(InvalidContainerError) as excinfo:
            GTMContainer.load(str(path))
        assert excinfo.value.source == str(path)
        assert str(path) in str(excinfo.value)

    def test_malformed_entities_are_skipped(self):
        export = make_export(tags=['garbage', None, 42, make_tag(1, 'GA4 - Event', firing=[1])])
        export['containerVersion']['trigger'] = 'not a list'

        container = GTMContainer(export)

        assert [t['name'] for t in container.tags] == ['GA4 - Event']
        assert container.triggers == []

    def test_non_string_names_are_not_indexed(self):
        export = make_export(
            tags=[make_tag(1, ['GA4'], ['gaawe'], firing=[10], value='{{DLV - Item}}')],
            triggers=[make_trigger(10, {'n': 1}, event='purchase')],
            variables=[make_variable(1, ['x'], '{{Page URL}}'), make_variable(2, 'DLV - Item', 'item', 'v', 'name')],
        )

        container = GTMContainer(export)

        assert list(container.variables_by_name) == ['DLV - Item']
        assert list(container.reference_graph.nodes) == ['DLV - Item']
        assert container.variable_usage['DLV - Item'] == [{'kind': 'tag', 'id': '1', 'name': ''}]
        assert container.trigger_usage == {'10': ['']}
        assert container.find_unused_templates() == []

    def test_live_only_entities_are_ignored(self):
        live = make_tag(2, 'Live Only')
        live['liveOnly'] = True
        container = make_container(tags=[make_tag(1, 'Workspace Tag'), live])

        assert [t['name'] for t in container.tags] == ['Workspace Tag']

    def test_paused_tags_can_be_excluded(self):
        paused = make_tag(2, 'Paused Tag')
        paused['paused'] = True
        export = make_export(tags=[make_tag(1, 'Active Tag'), paused])

        assert len(GTMContainer(export).tags) == 2
        assert len(GTMContainer(export, include_paused_tags=False).tags) == 1

    def test_counts(self):
        container = make_container(
            tags=[make_tag(1, 'A'), make_tag(2, 'B')],
            triggers=[make_trigger(10, 'T')],
            variables=[make_variable(1, 'V')],
        )
        counts = container.container_info['counts']
        assert counts['tags'] == 2
        assert counts['triggers'] == 1
        assert counts['variables'] == 1


class TestReferences:
    def test_references_found_in_nested_parameters_and_filters(self):
        tag = make_tag(1, 'GA4 - Event', firing=[10])
        tag['parameter'].append({
            'type': 'LIST',
            'key': 'eventParameters',
            'list': [{'type': 'MAP', 'map': [template('value', '{{DLV - Order ID}} / {{DLV - Revenue}}')]}]
        })
        trigger = make_trigger(10, 'CE - purchase', event='purchase')
        trigger['filter'] = [{'type': 'CONTAINS', 'parameter': [template('arg0', '{{Page URL}}')]}]
        container = make_container(tags=[tag], triggers=[trigger])

        assert container.get_references_for('tag', 'GA4 - Event') == ['DLV - Order ID', 'DLV - Revenue']
        assert 'Page URL' in container.get_references_for('trigger', 'CE - purchase')

    def test_non_template_values_are_not_references(self):
        tag = make_tag(1, 'HTML')
        tag['parameter'].append({'type': 'BOOLEAN', 'key': 'flag', 'value': '{{Not A Reference}}'})
        container = make_container(tags=[tag])

        assert container.get_references_for('tag', 'HTML') == []

    def test_reference_graph_links_variables(self):
        container = make_container(variables=[
            make_variable(1, 'A', '{{B}}'),
            make_variable(2, 'B', 'plain'),
        ])

        assert container.get_variable_references('A') == ['B']
        assert container.get_variable_references('B') == []
        assert container.get_variable_references('Missing') == []


class TestDuplicates:
    def test_signature_ignores_name_and_id(self):
        first = make_tag(1, 'GA4 - Purchase', firing=[10], eventName='purchase')
        second = make_tag(2, 'GA4 - Purchase Copy', firing=[10], eventName='purchase')
        container = make_container(tags=[first, second], triggers=[make_trigger(10, 'CE', event='purchase')])

        assert container.get_tag_signature(first) == container.get_tag_signature(second)
        groups = container.find_duplicates()['tags']
        assert len(groups) == 1
        assert [t['name'] for t in groups[0]['items']] == ['GA4 - Purchase', 'GA4 - Purchase Copy']

    def test_different_configuration_is_not_a_duplicate(self):
        container = make_container(tags=[
            make_tag(1, 'GA4 - Purchase', firing=[10], eventName='purchase'),
            make_tag(2, 'GA4 - Refund', firing=[10], eventName='refund'),
        ])

        assert container.find_duplicates()['tags'] == []


class TestUnused:
    def test_tag_without_existing_trigger_is_unused(self):
        container = make_container(
            tags=[
                make_tag(1, 'Fires', firing=[10]),
                make_tag(2, 'All Pages', firing=[ALL_PAGES_TRIGGER_ID]),
                make_tag(3, 'Dangling', firing=[99]),
                make_tag(4, 'No Trigger'),
            ],
            triggers=[make_trigger(10, 'CE', event='x')],
        )

        assert [t['name'] for t in container.find_unused_tags()] == ['Dangling', 'No Trigger']

    def test_unreferenced_trigger_is_unused(self):
        container = make_container(
            tags=[make_tag(1, 'Tag', firing=[10])],
            triggers=[make_trigger(10, 'Used', event='a'), make_trigger(11, 'Orphan', event='b')],
        )

        assert [t['name'] for t in container.find_unused_triggers()] == ['Orphan']

    def test_self_reference_does_not_keep_a_variable_alive(self):
        container = make_container(
            tags=[make_tag(1, 'Tag', measurementId='{{Used}}')],
            variables=[make_variable(1, 'Used', 'G-1'), make_variable(2, 'Loop', '{{Loop}}')],
        )

        assert [v['name'] for v in container.find_unused_variables()] == ['Loop']

    def test_empty_folder_is_unused(self):
        tag = make_tag(1, 'Tag')
        tag['parentFolderId'] = '5'
        container = make_container(
            tags=[tag],
            folders=[{'folderId': '5', 'name': 'GA4'}, {'folderId': '6', 'name': 'Empty'}],
        )

        assert [f['name'] for f in container.find_unused()['folders']] == ['Empty']
