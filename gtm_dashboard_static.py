#!/usr/bin/env python3
"""
GTM Container Optimizer Dashboard - Static HTML Generator
Generates a standalone HTML file from an analysis report that can be opened in any browser
"""

import plotly.graph_objects as go
import plotly.express as px
import pandas as pd
import json
import sys
from datetime import datetime
from html import escape
import os

# Color scheme
COLORS = {
    'primary': '#1f77b4',
    'success': '#2ca02c',
    'warning': '#ff7f0e',
    'danger': '#d62728',
    'info': '#17a2b8',
    'light': '#f8f9fa',
    'dark': '#343a40'
}

SEVERITY_COLORS = {
    'critical': '#8b0000',
    'high': COLORS['danger'],
    'medium': COLORS['warning'],
    'low': COLORS['info']
}

SEVERITY_ORDER = ['critical', 'high', 'medium', 'low']

SCORE_LABELS = {
    'overall': 'Overall',
    'cleanup': 'Cleanup',
    'performance': 'Performance',
    'structure': 'Structure',
    'security': 'Security',
    'privacy': 'Privacy',
    'ssgReadiness': 'SSG Readiness'
}

PRIORITY_COLORS = {'CRITICAL': 'danger', 'HIGH': 'danger', 'MEDIUM': 'warning', 'LOW': 'info'}


def load_analysis_data(filename):
    """Load the GTM analysis JSON report"""
    try:
        with open(filename, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: File '{filename}' not found.")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON file. {e}")
        sys.exit(1)


def prepare_issue_data(data):
    """Issues as a DataFrame, most severe first"""
    columns = ['Severity', 'Category', 'Type', 'Entity', 'Title', 'Message', 'Action']
    rows = [
        {
            'Severity': issue.get('severity', 'low'),
            'Category': issue.get('category', ''),
            'Type': issue.get('type', ''),
            'Entity': issue.get('entityName', ''),
            'Title': issue.get('title', ''),
            'Message': issue.get('message', ''),
            'Action': issue.get('action', '')
        }
        for issue in data.get('issues', [])
    ]
    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df['Rank'] = df['Severity'].map({s: i for i, s in enumerate(SEVERITY_ORDER)}).fillna(len(SEVERITY_ORDER))
        df = df.sort_values(['Rank', 'Category'], kind='stable').drop(columns='Rank').reset_index(drop=True)
    return df


def prepare_score_data(data):
    scores = data.get('scores', {})
    rows = {
        SCORE_LABELS[key]: scores.get(key, 0)
        for key in SCORE_LABELS if isinstance(scores.get(key), (int, float))
    }
    return pd.DataFrame.from_dict(rows, orient='index', columns=['Score']).reset_index().rename(
        columns={'index': 'Dimension'})


def create_improvement_recommendations(data):
    """Cards for the improvement guide: score driven recommendations first, then cleanup lists"""
    recommendations = []

    for rec in data.get('recommendations', []):
        recommendations.append({
            'priority': rec.get('priority', 'low').upper(),
            'category': rec.get('category', '').title(),
            'title': rec.get('title', ''),
            'impact': f"Estimated impact: {rec.get('estimatedImpact', '')}",
            'action': rec.get('description', ''),
            'items': [],
            'show_all': True
        })

    unused = data.get('unused', {})
    for kind in ('tags', 'triggers', 'variables', 'folders', 'templates'):
        names = unused.get(kind, [])
        if names:
            recommendations.append({
                'priority': 'HIGH' if kind == 'tags' else 'MEDIUM',
                'category': 'Cleanup',
                'title': f'Remove {len(names)} Unused {kind.title()}',
                'impact': 'Reduces container size and complexity',
                'action': f'The following {kind} are not used:',
                'items': names,
                'show_all': True
            })

    duplicates = data.get('duplicates', {})
    items = []
    total_duplicates = 0
    for kind, groups in duplicates.items():
        for group in groups:
            total_duplicates += len(group['names']) - 1
            items.append(f"{kind.title()}: {', '.join(group['names'])}")
    if items:
        recommendations.append({
            'priority': 'MEDIUM',
            'category': 'Consolidation',
            'title': f'Consolidate {total_duplicates} Duplicates in {len(items)} Groups',
            'impact': 'Keep the first element of each group and remove the rest',
            'action': 'Review and consolidate these duplicate groups:',
            'items': items,
            'show_all': True
        })

    suggestions = data.get('suggestions', [])
    if suggestions:
        items = [f"{s['title']}: {s['message']}" for s in suggestions]
        recommendations.append({
            'priority': 'LOW',
            'category': 'Suggestions',
            'title': f'{len(suggestions)} Optimization Suggestions',
            'impact': 'Optional improvements',
            'action': '',
            'items': items[:20],
            'show_all': False
        })
        if len(items) > 20:
            recommendations[-1]['items'].append(f"... and {len(items) - 20} more suggestions")

    return recommendations


def score_color(score):
    if score >= 80:
        return COLORS['success']
    if score >= 60:
        return COLORS['warning']
    return COLORS['danger']


def render_recommendations(recommendations):
    recommendations_html = ""
    for rec in recommendations:
        priority_color = PRIORITY_COLORS.get(rec['priority'], 'info')

        # For long lists, create scrollable container
        items = ''.join(f'<li>{escape(str(item))}</li>' for item in rec['items'])
        if rec.get('show_all', False) and len(rec['items']) > 10:
            items_html = ('<div class="recommendation-list" style="max-height: 300px; overflow-y: auto; '
                          'border: 1px solid #ddd; padding: 10px; border-radius: 4px;">'
                          f'<ul class="mb-0">{items}</ul></div>')
        elif items:
            items_html = f'<ul class="mb-0">{items}</ul>'
        else:
            items_html = ''

        action_html = f"<p>{escape(rec['action'])}</p>" if rec.get('action') else ''

        recommendations_html += f"""
        <div class="card mb-3 border-{priority_color}">
            <div class="card-body">
                <span class="badge badge-{priority_color} float-right">{rec['priority']}</span>
                <h5 class="card-title">{escape(rec['title'])}</h5>
                <p class="text-muted small">{escape(rec['impact'])}</p>
                {action_html}
                {items_html}
            </div>
        </div>
        """
    return recommendations_html


def render_issue_table(df_issues, limit=100):
    table_html = """
    <table class="table table-striped table-hover">
        <thead>
            <tr>
                <th>Severity</th>
                <th>Category</th>
                <th>Entity</th>
                <th>Issue</th>
                <th>Action</th>
            </tr>
        </thead>
        <tbody>
    """
    for _, row in df_issues.head(limit).iterrows():
        row_class = {'critical': 'table-danger', 'high': 'table-warning'}.get(row['Severity'], '')
        table_html += f"""
            <tr class="{row_class}">
                <td><strong>{row['Severity']}</strong></td>
                <td>{escape(str(row['Category']))}</td>
                <td>{escape(str(row['Entity']))}</td>
                <td>{escape(str(row['Title']))}<br><small class="text-muted">{escape(str(row['Message']))}</small></td>
                <td>{escape(str(row['Action']))}</td>
            </tr>
        """
    table_html += "</tbody></table>"
    if len(df_issues) > limit:
        table_html += f'<p class="text-muted">... and {len(df_issues) - limit} more issues in the JSON report</p>'
    return table_html


def generate_static_dashboard(data, output_filename='gtm_dashboard.html'):
    """Generate a static HTML dashboard"""

    # Prepare data
    df_issues = prepare_issue_data(data)
    df_scores = prepare_score_data(data)
    recommendations = create_improvement_recommendations(data)

    info = data.get('containerInfo', {})
    counts = info.get('counts', {})
    scores = data.get('scores', {})
    overall = scores.get('overall', 0)

    # Create figures
    # 1. Score Bar Chart
    fig_scores = px.bar(
        df_scores,
        x='Dimension',
        y='Score',
        title='Scores by Dimension',
        range_y=[0, 100],
        color='Score',
        color_continuous_scale=[COLORS['danger'], COLORS['warning'], COLORS['success']],
        range_color=[0, 100]
    )
    fig_scores.update_layout(
        height=400,
        paper_bgcolor='white',
        plot_bgcolor='white'
    )

    # 2. Issues by Category
    if df_issues.empty:
        category_counts = pd.Series({'No issues': 1})
    else:
        category_counts = df_issues['Category'].value_counts()
    fig_categories = px.pie(
        values=category_counts.values,
        names=category_counts.index,
        title='Issues by Category'
    )
    fig_categories.update_layout(paper_bgcolor='white')

    # 3. Severity Donut Chart
    severity_counts = df_issues['Severity'].value_counts() if not df_issues.empty else pd.Series(dtype=int)
    severities = [s for s in SEVERITY_ORDER if severity_counts.get(s, 0)]
    fig_severity = go.Figure(data=[go.Pie(
        labels=[s.title() for s in severities],
        values=[int(severity_counts[s]) for s in severities],
        hole=.3,
        marker_colors=[SEVERITY_COLORS[s] for s in severities]
    )])
    fig_severity.update_layout(
        title='Issues by Severity',
        paper_bgcolor='white'
    )

    # 4. Overall Score Gauge
    fig_gauge = go.Figure(go.Indicator(
        mode="gauge+number",
        value=overall,
        title={'text': f"Container Health Score (Grade {scores.get('grade', '-')})"},
        domain={'x': [0, 1], 'y': [0, 1]},
        gauge={
            'axis': {'range': [None, 100]},
            'bar': {'color': score_color(overall)},
            'steps': [
                {'range': [0, 60], 'color': "lightgray"},
                {'range': [60, 80], 'color': "gray"}
            ],
            'threshold': {
                'line': {'color': "red", 'width': 4},
                'thickness': 0.75,
                'value': 90
            }
        }
    ))
    fig_gauge.update_layout(height=300, paper_bgcolor='white')

    recommendations_html = render_recommendations(recommendations)
    table_html = render_issue_table(df_issues)
    best_practices = data.get('bestPractices', {})
    container_name = escape(str(info.get('name', 'GTM Container')))

    # Generate HTML
    html_template = f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>GTM Container Optimizer - {container_name}</title>
    <link href="https://stackpath.bootstrapcdn.com/bootstrap/4.5.2/css/bootstrap.min.css" rel="stylesheet">
    <script src="https://cdn.plot.ly/plotly-latest.min.js"></script>
    <style>
        body {{
            background-color: #f8f9fa;
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
        }}
        .metric-card {{
            background: white;
            border-radius: 8px;
            padding: 20px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            text-align: center;
            margin-bottom: 20px;
        }}
        .metric-card h3 {{
            font-size: 2.5rem;
            margin: 10px 0;
            font-weight: 300;
        }}
        .metric-card p {{
            color: #6c757d;
            text-transform: uppercase;
            font-size: 0.875rem;
            letter-spacing: 0.5px;
            margin: 0;
        }}
        .card {{
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            margin-bottom: 20px;
        }}
        .card.border-danger {{ border-left: 4px solid #dc3545; }}
        .card.border-warning {{ border-left: 4px solid #ffc107; }}
        .card.border-info {{ border-left: 4px solid #17a2b8; }}
        .plotly-graph-div {{
            background: white;
            border-radius: 8px;
            padding: 20px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            margin-bottom: 20px;
        }}
        .badge {{ padding: 0.375rem 0.75rem; }}
        h1, h2 {{ color: #343a40; }}
        .table-container {{
            background: white;
            border-radius: 8px;
            padding: 20px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            margin-bottom: 20px;
            overflow-x: auto;
        }}
        .recommendation-list {{
            font-size: 0.9rem;
        }}
        .card-columns {{
            column-count: 1;
        }}
        @media (min-width: 768px) {{
            .card-columns {{
                column-count: 2;
            }}
        }}
        @media (min-width: 1200px) {{
            .card-columns {{
                column-count: 3;
            }}
        }}
    </style>
</head>
<body>
    <div class="container-fluid mt-4">
        <h1 class="text-center mb-4">GTM Container Optimizer: {container_name}</h1>
        <p class="text-center text-muted">
            {escape(str(info.get('publicId', '')))} |
            Analysis Date: {data.get('generatedAt') or datetime.now().strftime("%Y-%m-%d %H:%M")}
        </p>

        <!-- Summary Metrics -->
        <div class="row mt-4">
            <div class="col-md-3">
                <div class="metric-card">
                    <p>Tags / Triggers / Variables</p>
                    <h3 class="text-primary">{counts.get('tags', 0)} / {counts.get('triggers', 0)} / {counts.get('variables', 0)}</h3>
                </div>
            </div>
            <div class="col-md-3">
                <div class="metric-card">
                    <p>Issues</p>
                    <h3 class="text-danger">{len(df_issues)}</h3>
                </div>
            </div>
            <div class="col-md-3">
                <div class="metric-card">
                    <p>Best Practices Score</p>
                    <h3 class="text-info">{best_practices.get('score', '-')}</h3>
                </div>
            </div>
            <div class="col-md-3">
                <div class="metric-card">
                    <p>SSG Readiness</p>
                    <h3 class="text-warning">{scores.get('ssgReadiness', '-')}</h3>
                </div>
            </div>
        </div>

        <!-- Health Score -->
        <div class="row mt-4">
            <div class="col-md-6">
                <div id="healthGauge"></div>
            </div>
            <div class="col-md-6">
                <div id="scoreChart"></div>
            </div>
        </div>

        <!-- Improvement Recommendations -->
        <div class="row mt-4">
            <div class="col-12">
                <h2>Container Improvement Guide</h2>
                <div class="card-columns">
                    {recommendations_html}
                </div>
            </div>
        </div>

        <!-- Charts -->
        <div class="row mt-4">
            <div class="col-md-6">
                <div id="severityChart"></div>
            </div>
            <div class="col-md-6">
                <div id="categoryChart"></div>
            </div>
        </div>

        <!-- Issues Table -->
        <div class="row mt-4">
            <div class="col-12">
                <h2>Issues</h2>
                <div class="table-container">
                    {table_html}
                </div>
            </div>
        </div>

        <!-- Footer -->
        <div class="row mt-5 mb-3">
            <div class="col-12 text-center text-muted">
                <hr>
                <p>Generated by GTM Container Optimizer |
                   <a href="#" onclick="window.print()">Print Report</a> |
                   <a href="#" onclick="downloadData()">Download JSON Data</a>
                </p>
            </div>
        </div>
    </div>

    <script>
        // Render charts
        Plotly.newPlot('healthGauge', {fig_gauge.to_json()});
        Plotly.newPlot('scoreChart', {fig_scores.to_json()});
        Plotly.newPlot('severityChart', {fig_severity.to_json()});
        Plotly.newPlot('categoryChart', {fig_categories.to_json()});

        // Download function
        function downloadData() {{
            const data = {json.dumps(data, indent=2)};
            const blob = new Blob([JSON.stringify(data, null, 2)], {{type: 'application/json'}});
            const url = URL.createObjectURL(blob);
            const a = document.createElement('a');
            a.href = url;
            a.download = 'gtm_analysis_data.json';
            document.body.appendChild(a);
            a.click();
            document.body.removeChild(a);
            URL.revokeObjectURL(url);
        }}
    </script>
</body>
</html>
"""

    # Write to file
    with open(output_filename, 'w', encoding='utf-8') as f:
        f.write(html_template)

    print(f"✅ Static dashboard generated: {output_filename}")
    print(f"📂 File location: {os.path.abspath(output_filename)}")
    print(f"🌐 Open in browser: file:///{os.path.abspath(output_filename).replace(os.sep, '/')}")


def main():
    """Main function"""
    if len(sys.argv) < 2:
        print("Usage: python gtm_dashboard_static.py <path_to_analysis_report.json> [output_filename.html]")
        sys.exit(1)

    # Load data
    input_filename = sys.argv[1]
    data = load_analysis_data(input_filename)

    # Generate output filename based on input filename
    if len(sys.argv) > 2:
        output_filename = sys.argv[2]
    else:
        base_name = os.path.basename(input_filename)
        if base_name.endswith('_analysis_report.json'):
            base_name = base_name[:-21]
        elif base_name.endswith('.json'):
            base_name = base_name[:-5]
        output_filename = f'gtm_dashboard_{base_name}.html'

    generate_static_dashboard(data, output_filename)


if __name__ == '__main__':
    main()
