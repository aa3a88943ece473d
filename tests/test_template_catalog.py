"""Tests for the server tag template catalogue."""

import base64
import json

from gtm_template_catalog import (
    EMPTY_CATALOG,
    StaticTemplateCatalog,
    TemplateDefinition,
    load_template_catalog,
    parse_template_catalog,
)


def encoded(text):
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


class TestTemplateDefinition:
    def test_decodes_template_data(self):
        definition = TemplateDefinition('cvt_1', 'Facebook', encoded('___INFO___\n{}'))

        assert definition.template_data == '___INFO___\n{}'

    def test_undecodable_data_is_empty(self):
        assert TemplateDefinition('cvt_1', 'Facebook', '***').template_data == ''
        assert TemplateDefinition('cvt_1', 'Facebook').template_data == ''

    def test_non_ascii_data_is_empty(self):
        assert TemplateDefinition('cvt_fb', 'FB', 'Vorlage für Meta').template_data == ''


class TestCatalog:
    def test_static_lookup(self):
        catalog = StaticTemplateCatalog({'facebook': TemplateDefinition('cvt_1', 'Facebook')})

        assert catalog.resolve('facebook').type_id == 'cvt_1'
        assert catalog.resolve('linkedin') is None
        assert EMPTY_CATALOG.resolve('facebook') is None

    def test_parse_skips_entries_without_type_id(self):
        catalog = parse_template_catalog({
            'facebook': {'typeId': 'cvt_fb', 'templateData': encoded('fb')},
            'linkedin': {'displayName': 'LinkedIn'},
            'broken': 'nope',
        })

        assert len(catalog) == 1
        assert catalog.resolve('facebook').display_name == 'cvt_fb'

    def test_load_from_file(self, tmp_path):
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps({
            'linkedin': {'typeId': 'cvt_li', 'displayName': 'LinkedIn CAPI', 'templateData': encoded('li')}
        }), encoding='utf-8')

        catalog = load_template_catalog(str(path))

        assert catalog.resolve('linkedin').display_name == 'LinkedIn CAPI'
        assert catalog.resolve('linkedin').template_data == 'li'

    def test_missing_or_broken_file_gives_empty_catalog(self, tmp_path):
        broken = tmp_path / 'broken.json'
        broken.write_text('{oops', encoding='utf-8')
        listed = tmp_path / 'list.json'
        listed.write_text('[]', encoding='utf-8')

        assert len(load_template_catalog(str(tmp_path / 'missing.json'))) == 0
        assert len(load_template_catalog(str(broken))) == 0
        assert len(load_template_catalog(str(listed))) == 0

    def test_unreadable_file_gives_empty_catalog(self, tmp_path):
        latin = tmp_path / 'latin.json'
        latin.write_bytes('{"facebook": {"typeId": "für"}}'.encode('latin-1'))

        assert len(load_template_catalog(str(tmp_path))) == 0
        assert len(load_template_catalog(str(latin))) == 0
