#!/usr/bin/env python3
"""
GTM Container Optimizer Pipeline
Analyzes a GTM container export and generates a static HTML dashboard, a
variable dependency graph and, on request, a server-side container in one step.

Usage:
    python run_gtm_analysis.py <path_to_gtm_export.json> [options]

Options:
    --debug              Show debug information during analysis
    --exclude-paused     Exclude paused tags from analysis
    --skip-dashboard     Only run the analyzer, skip dashboard generation
    --skip-graph         Skip the dependency graph
    --output-dir DIR     Output directory for generated files (default: same as input)
    --rules-config FILE  JSON file with enabled/disabled checks and thresholds
    --ssg                Also generate a server-side container export
    --vendor KEY         Only migrate tags of this vendor (repeatable)
    --catalog FILE       JSON catalogue of server tag templates
    --transport-url URL  Tagging server URL for the patched client container
"""

import argparse
import sys
import os
import re
import json

from loguru import logger

from gtm_best_practices import format_best_practices_result
from gtm_container import GTMContainer
from gtm_exceptions import InvalidContainerError
from gtm_optimizer import GTMOptimizer
from gtm_rules import CHECKS, RulesConfig
from gtm_ssg_prep import VENDOR_CATALOG
from gtm_template_catalog import EMPTY_CATALOG, load_template_catalog

SEVERITY_ICONS = {'critical': '🔴', 'high': '🟠', 'medium': '🟡', 'low': '🔵'}


def validate_filename(file_path):
    """
    Validate that the filename doesn't contain copy indicators like (1), (2), etc.
    These appear when files are duplicated by the OS (e.g., downloaded twice)
    and often indicate stale data.
    """
    basename = os.path.basename(file_path)

    copy_pattern = re.compile(r'\(\d+\)')
    match = copy_pattern.search(basename)

    if match:
        clean_name = copy_pattern.sub('', basename)
        clean_name = re.sub(r'  +', ' ', clean_name).strip()
        # "file (1).json" -> "file.json"
        clean_name = re.sub(r' \.', '.', clean_name)

        print(f"ERROR: The filename '{basename}' contains a copy indicator '{match.group()}'.")
        print("  This usually means the file is a duplicate created by your OS")
        print("  (e.g., a second download of the same file).")
        print()
        print("  Suggested actions:")
        print(f"    1. Rename the file to: {clean_name}")
        print("    2. Or verify you are using the correct (original) export file.")
        print()

        clean_path = os.path.join(os.path.dirname(file_path), clean_name)
        if os.path.exists(clean_path):
            print(f"  NOTE: The clean-named file '{clean_name}' already exists in the same directory.")
            print("  You may want to use that one instead:")
            print(f"    python {os.path.basename(__file__)} \"{clean_path}\"")
        else:
            print("  To rename, run:")
            print(f"    mv \"{file_path}\" \"{clean_path}\"")

        sys.exit(1)


def configure_logging(debug_mode=False):
    logger.remove()
    logger.add(sys.stderr, level='DEBUG' if debug_mode else 'WARNING')


def output_base(file_path, output_dir=None):
    """Directory and base name the generated files are written to"""
    base_name = os.path.basename(file_path)
    if base_name.endswith('.json'):
        base_name = base_name[:-5]
    directory = output_dir or os.path.dirname(file_path) or '.'
    return directory, base_name


def write_json(data, path):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def print_report(report):
    """Print the analysis report to the console"""
    info = report['containerInfo']
    scores = report['scores']
    counts = info['counts']

    print(f"Container: {info['name']} ({info['publicId'] or 'no public id'})")
    print(f"Tags: {counts['tags']} | Triggers: {counts['triggers']} | Variables: {counts['variables']} | "
          f"Folders: {counts['folders']} | Templates: {counts['templates']}")
    print()
    print(f"OVERALL SCORE: {scores['overall']}/100 (Grade {scores['grade']})")
    print("-" * 80)
    for key in ('cleanup', 'performance', 'structure', 'security', 'privacy', 'ssgReadiness'):
        print(f"  {key:<15} {scores[key]:>3}")
    print()

    issues = report['issues']
    print(f"ISSUES ({len(issues)})")
    print("-" * 80)
    for issue in issues:
        icon = SEVERITY_ICONS.get(issue['severity'], '•')
        entity = f" [{issue['entityName']}]" if issue['entityName'] else ''
        print(f"{icon} {issue['severity'].upper():<8} {issue['category']:<14} {issue['title']}{entity}")
        print(f"    {issue['message']}")
    print()

    if report['suggestions']:
        print(f"SUGGESTIONS ({len(report['suggestions'])})")
        print("-" * 80)
        for suggestion in report['suggestions']:
            print(f"  - {suggestion['title']}: {suggestion['message']}")
        print()

    if report['recommendations']:
        print("RECOMMENDATIONS")
        print("-" * 80)
        for rec in report['recommendations']:
            print(f"  [{rec['priority'].upper()}] {rec['title']}")
            print(f"    {rec['description']}")
        print()

    print(format_best_practices_result(report['bestPractices']))


def run_analyzer(container, config, output_dir, base_name):
    """Run the rules engine and return the report + output file path"""
    optimizer = GTMOptimizer(container, config)
    report = optimizer.analyze()

    print_report(report)

    output_file = os.path.join(output_dir, f'{base_name}_analysis_report.json')
    write_json(report, output_file)
    print(f"\nAnalysis report saved to: {output_file}")

    return optimizer, report, output_file


def run_dashboard(analysis_data, output_dir, base_name):
    """Run the static dashboard generator"""
    from gtm_dashboard_static import generate_static_dashboard

    output_filename = os.path.join(output_dir, f'gtm_dashboard_{base_name}.html')
    generate_static_dashboard(analysis_data, output_filename)
    return output_filename


def run_graph(container, output_dir, base_name):
    """Render the variable dependency graph; returns None when there is nothing to draw"""
    from gtm_dependency_graph import build_dependency_graph, create_network_visualization

    G = build_dependency_graph(container)
    if len(G.nodes()) == 0:
        print("No variable references found, dependency graph skipped.")
        return None

    output_filename = os.path.join(output_dir, f'gtm_graph_{base_name}.html')
    create_network_visualization(G, output_filename)
    return output_filename


def run_ssg(optimizer, output_dir, base_name, vendors=None, catalog_path=None, transport_url=None):
    """Generate the server container, the patched client container and the summary"""
    catalog = load_template_catalog(catalog_path) if catalog_path else EMPTY_CATALOG
    bundle = optimizer.generate_ssg_export_bundle(
        selected_vendors=vendors or None,
        catalog=catalog,
        transport_url=transport_url
    )

    files = {
        'server': os.path.join(output_dir, f'{base_name}_ssg_server.json'),
        'client': os.path.join(output_dir, f'{base_name}_ssg_client.json'),
        'summary': os.path.join(output_dir, f'{base_name}_ssg_summary.json'),
    }
    write_json(bundle['serverContainer'], files['server'])
    write_json(bundle['clientContainer'], files['client'])
    write_json(bundle['summary'], files['summary'])

    summary = bundle['summary']
    print(f"Tags created:        {summary['tagsCreated']}")
    print(f"Triggers created:    {summary['triggersCreated']}")
    print(f"Constants created:   {summary['constantsCreated']}")
    print(f"Event data vars:     {summary['eventDataVarsCreated']}")
    print(f"Clients created:     {summary['clientsCreated']}")
    print(f"Templates created:   {summary['templatesCreated']}")
    if summary['placeholders']:
        print(f"\n⚠️  {len(summary['placeholders'])} values still need to be filled in:")
        for placeholder in summary['placeholders']:
            print(f"  - {placeholder['name']}: {placeholder['placeholder']}")
    for warning in summary['warnings']:
        print(f"⚠️  {warning}")
    print()
    print(f"✅ Server container saved to: {files['server']}")
    print(f"✅ Client container saved to: {files['client']}")
    print(f"✅ Summary saved to: {files['summary']}")
    return files


def build_parser():
    parser = argparse.ArgumentParser(
        description='Analyze a GTM container export and optionally generate a server-side container'
    )
    parser.add_argument('file', help='Path to the GTM container export (.json)')
    parser.add_argument('--debug', action='store_true', help='Show debug information during analysis')
    parser.add_argument('--exclude-paused', action='store_true', help='Exclude paused tags from analysis')
    parser.add_argument('--skip-dashboard', action='store_true',
                        help='Only run the analyzer, skip dashboard generation')
    parser.add_argument('--skip-graph', action='store_true', help='Skip the dependency graph')
    parser.add_argument('--output-dir', help='Output directory for generated files (default: same as input)')
    parser.add_argument('--rules-config', help='JSON file with enabled/disabled checks and thresholds')
    parser.add_argument('--ssg', action='store_true', help='Also generate a server-side container export')
    parser.add_argument('--vendor', action='append', default=[],
                        choices=[v['key'] for v in VENDOR_CATALOG],
                        help='Only migrate tags of this vendor (repeatable)')
    parser.add_argument('--catalog', help='JSON catalogue of server tag templates')
    parser.add_argument('--transport-url', help='Tagging server URL for the patched client container')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.debug)

    file_path = args.file

    # --- Step 0: Validate the input file ---
    if not os.path.exists(file_path):
        print(f"ERROR: File '{file_path}' not found.")
        sys.exit(1)

    if not file_path.endswith('.json'):
        print("ERROR: Input file must be a .json GTM export file.")
        sys.exit(1)

    validate_filename(file_path)

    output_dir, base_name = output_base(file_path, args.output_dir)
    os.makedirs(output_dir, exist_ok=True)

    try:
        config = RulesConfig.from_file(args.rules_config) if args.rules_config else RulesConfig()
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not read rules config '{args.rules_config}'. {e}")
        sys.exit(1)
    if args.debug:
        enabled = [c for c in CHECKS if config.is_enabled(c)]
        print(f"Running in DEBUG mode, {len(enabled)} of {len(CHECKS)} checks enabled\n")

    # --- Step 1: Run the rules engine ---
    print("=" * 80)
    print("STEP 1: Analyzing GTM Container")
    print("=" * 80)
    print()

    try:
        container = GTMContainer.load(file_path, include_paused_tags=not args.exclude_paused)
        optimizer, report, analysis_file = run_analyzer(container, config, output_dir, base_name)
    except InvalidContainerError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"ERROR during analysis: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    dashboard_file = None
    graph_file = None
    ssg_files = None

    # --- Step 2: Generate the Static Dashboard ---
    if args.skip_dashboard:
        print("\nDashboard generation skipped (--skip-dashboard flag).")
    else:
        print()
        print("=" * 80)
        print("STEP 2: Generating Static HTML Dashboard")
        print("=" * 80)
        print()

        try:
            dashboard_file = run_dashboard(report, output_dir, base_name)
        except Exception as e:
            print(f"ERROR during dashboard generation: {e}")
            import traceback
            traceback.print_exc()
            sys.exit(1)

    # --- Step 3: Dependency graph ---
    if args.skip_graph:
        print("\nDependency graph skipped (--skip-graph flag).")
    else:
        print()
        print("=" * 80)
        print("STEP 3: Generating Variable Dependency Graph")
        print("=" * 80)
        print()

        try:
            graph_file = run_graph(container, output_dir, base_name)
        except Exception as e:
            print(f"ERROR during graph generation: {e}")
            import traceback
            traceback.print_exc()
            sys.exit(1)

    # --- Step 4: Server-side container ---
    if args.ssg:
        print()
        print("=" * 80)
        print("STEP 4: Generating Server-Side GTM Container")
        print("=" * 80)
        print()

        try:
            ssg_files = run_ssg(optimizer, output_dir, base_name, args.vendor, args.catalog, args.transport_url)
        except Exception as e:
            print(f"ERROR during server-side generation: {e}")
            import traceback
            traceback.print_exc()
            sys.exit(1)

    # --- Summary ---
    print()
    print("=" * 80)
    print("PIPELINE COMPLETE")
    print("=" * 80)
    print(f"  Input file:       {file_path}")
    print(f"  Analysis report:  {analysis_file}")
    if dashboard_file:
        print(f"  Dashboard:        {dashboard_file}")
    if graph_file:
        print(f"  Dependency graph: {graph_file}")
    if ssg_files:
        print(f"  Server container: {ssg_files['server']}")
        print(f"  Client container: {ssg_files['client']}")
        print(f"  SSG summary:      {ssg_files['summary']}")
    print()


if __name__ == '__main__':
    main()
