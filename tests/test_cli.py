"""End-to-end tests for the run_gtm_analysis pipeline."""

import json

import pytest
from loguru import logger

import run_gtm_analysis
from gtm_builders import ga4_scenario_container


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # main() points loguru at the captured stderr of the current test
    logger.remove()


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / 'shop_export.json'
    path.write_text(json.dumps(ga4_scenario_container().gtm_data), encoding='utf-8')
    return path


class TestPipeline:
    def test_analysis_only(self, export_file, tmp_path, capsys):
        out_dir = tmp_path / 'out'

        run_gtm_analysis.main([str(export_file), '--skip-dashboard', '--skip-graph', '--output-dir', str(out_dir)])

        report = json.loads((out_dir / 'shop_export_analysis_report.json').read_text(encoding='utf-8'))
        assert report['containerInfo']['name'] == 'Test Container'
        assert 'PIPELINE COMPLETE' in capsys.readouterr().out

    def test_full_run_with_ssg(self, export_file, tmp_path):
        out_dir = tmp_path / 'out'

        run_gtm_analysis.main([str(export_file), '--ssg', '--vendor', 'ga4', '--output-dir', str(out_dir),
                               '--transport-url', 'https://sgtm.example.com'])

        assert (out_dir / 'gtm_dashboard_shop_export.html').exists()
        server = json.loads((out_dir / 'shop_export_ssg_server.json').read_text(encoding='utf-8'))
        summary = json.loads((out_dir / 'shop_export_ssg_summary.json').read_text(encoding='utf-8'))
        assert server['containerVersion']['container']['name'] == '[SSG] Test Container'
        assert summary['placeholders'] == []
        assert (out_dir / 'shop_export_ssg_client.json').exists()

    def test_rules_config(self, export_file, tmp_path):
        rules = tmp_path / 'rules.json'
        rules.write_text(json.dumps({'disabled_checks': list(run_gtm_analysis.CHECKS)}), encoding='utf-8')
        out_dir = tmp_path / 'out'

        run_gtm_analysis.main([str(export_file), '--skip-dashboard', '--skip-graph', '--output-dir', str(out_dir),
                               '--rules-config', str(rules)])

        report = json.loads((out_dir / 'shop_export_analysis_report.json').read_text(encoding='utf-8'))
        assert report['issues'] == []
        assert report['suggestions'] == []


class TestInputValidation:
    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            run_gtm_analysis.main([str(tmp_path / 'missing.json')])
        assert excinfo.value.code == 1

    def test_copy_indicator_rejected(self, tmp_path, capsys):
        path = tmp_path / 'export (1).json'
        path.write_text('{}', encoding='utf-8')

        with pytest.raises(SystemExit):
            run_gtm_analysis.main([str(path)])
        assert "copy indicator '(1)'" in capsys.readouterr().out

    def test_invalid_container(self, tmp_path, capsys):
        path = tmp_path / 'broken.json'
        path.write_text('{"exportFormatVersion": 2}', encoding='utf-8')

        with pytest.raises(SystemExit) as excinfo:
            run_gtm_analysis.main([str(path), '--skip-dashboard', '--skip-graph'])
        assert excinfo.value.code == 1
        assert "missing 'containerVersion'" in capsys.readouterr().out

    def test_unknown_vendor_is_rejected(self, export_file):
        with pytest.raises(SystemExit):
            run_gtm_analysis.main([str(export_file), '--ssg', '--vendor', 'myspace'])
